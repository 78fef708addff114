"""domain, scan, finding and verification_attempt tables

Revision ID: m1_initial_schema
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = 'm1_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_WHERE = "status IN ('pending', 'running')"


def upgrade():
    # ── domain ──
    op.create_table(
        'domain',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(253), nullable=False),
        sa.Column('verification_token', sa.String(128), nullable=False),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('verification_method', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('owner_id', 'name', name='uq_domain_owner_name'),
    )
    op.create_index('ix_domain_owner_id', 'domain', ['owner_id'])

    # ── scan ──
    op.create_table(
        'scan',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('domain_id', sa.Integer(), sa.ForeignKey('domain.id', ondelete='CASCADE'), nullable=False),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_step_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('consent_given', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.String(500), nullable=True),
    )
    op.create_index('ix_scan_domain_id', 'scan', ['domain_id'])
    op.create_index('ix_scan_owner_id', 'scan', ['owner_id'])
    # at most one pending/running scan per domain
    op.create_index(
        'uq_scan_active_domain', 'scan', ['domain_id'], unique=True,
        sqlite_where=sa.text(ACTIVE_WHERE),
        postgresql_where=sa.text(ACTIVE_WHERE),
    )

    # ── finding ──
    op.create_table(
        'finding',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('scan_id', sa.Integer(), sa.ForeignKey('scan.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('step_index', sa.Integer(), nullable=True),
        sa.Column('severity', sa.String(20), nullable=False, server_default='info'),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.String(2000), nullable=False, server_default=''),
        sa.Column('affected_url', sa.String(2048), nullable=True),
        sa.Column('recommendation', sa.String(2000), nullable=False, server_default=''),
        sa.Column('cwe', sa.String(20), nullable=True),
        sa.Column('details_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_finding_scan_id', 'finding', ['scan_id'])

    # ── verification_attempt ──
    op.create_table(
        'verification_attempt',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('domain_id', sa.Integer(), sa.ForeignKey('domain.id', ondelete='CASCADE'), nullable=False),
        sa.Column('method', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('details', sa.String(1000), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_verification_attempt_domain_id', 'verification_attempt', ['domain_id'])


def downgrade():
    op.drop_index('ix_verification_attempt_domain_id', table_name='verification_attempt')
    op.drop_table('verification_attempt')

    op.drop_index('ix_finding_scan_id', table_name='finding')
    op.drop_table('finding')

    op.drop_index('uq_scan_active_domain', table_name='scan')
    op.drop_index('ix_scan_owner_id', table_name='scan')
    op.drop_index('ix_scan_domain_id', table_name='scan')
    op.drop_table('scan')

    op.drop_index('ix_domain_owner_id', table_name='domain')
    op.drop_table('domain')
