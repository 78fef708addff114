from __future__ import annotations

from datetime import datetime, timezone
from sqlalchemy import UniqueConstraint
from .extensions import db


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# scan status values
SCAN_PENDING = "pending"
SCAN_RUNNING = "running"
SCAN_COMPLETED = "completed"
SCAN_FAILED = "failed"
SCAN_CANCELLED = "cancelled"

ACTIVE_SCAN_STATUSES = (SCAN_PENDING, SCAN_RUNNING)
TERMINAL_SCAN_STATUSES = (SCAN_COMPLETED, SCAN_FAILED, SCAN_CANCELLED)

SEVERITIES = ("critical", "high", "medium", "low", "info")

VERIFICATION_METHODS = ("dns_txt", "html_file", "meta_tag")


class Domain(db.Model):
    __tablename__ = "domain"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)

    # normalized: lowercase, no scheme/path/port
    name = db.Column(db.String(253), nullable=False)

    # issued once at creation, never rotated
    verification_token = db.Column(db.String(128), nullable=False)

    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    verified_at = db.Column(db.DateTime, nullable=True)
    verification_method = db.Column(db.String(20), nullable=True)  # dns_txt, html_file, meta_tag

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    updated_at = db.Column(db.DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_domain_owner_name"),
    )


class Scan(db.Model):
    __tablename__ = "scan"

    id = db.Column(db.Integer, primary_key=True)
    domain_id = db.Column(
        db.Integer,
        db.ForeignKey("domain.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id = db.Column(db.String(64), nullable=False, index=True)

    # status values: pending, running, completed, failed, cancelled
    status = db.Column(db.String(20), nullable=False, default=SCAN_PENDING)
    progress = db.Column(db.Integer, nullable=False, default=0)
    current_step_index = db.Column(db.Integer, nullable=False, default=0)
    consent_given = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    updated_at = db.Column(db.DateTime, nullable=False, default=now_utc, onupdate=now_utc)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    error_message = db.Column(db.String(500), nullable=True)

    # At most one pending/running scan per domain. Partial unique index so the
    # admission check is an atomic reservation rather than read-then-write.
    __table_args__ = (
        db.Index(
            "uq_scan_active_domain",
            "domain_id",
            unique=True,
            sqlite_where=db.text("status IN ('pending', 'running')"),
            postgresql_where=db.text("status IN ('pending', 'running')"),
        ),
    )

    domain = db.relationship(
        "Domain",
        backref=db.backref("scans", cascade="all, delete-orphan", passive_deletes=True),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SCAN_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_SCAN_STATUSES


class Finding(db.Model):
    """Append-only per scan. Never updated or deduplicated after insert."""
    __tablename__ = "finding"

    id = db.Column(db.Integer, primary_key=True)
    scan_id = db.Column(
        db.Integer,
        db.ForeignKey("scan.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # catalog category that produced the finding (transport, headers, ...)
    category = db.Column(db.String(50), nullable=False)
    step_index = db.Column(db.Integer, nullable=True)

    severity = db.Column(db.String(20), nullable=False, default="info")
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(2000), nullable=False, default="")
    affected_url = db.Column(db.String(2048), nullable=True)
    recommendation = db.Column(db.String(2000), nullable=False, default="")
    cwe = db.Column(db.String(20), nullable=True)
    details_json = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)

    scan = db.relationship(
        "Scan",
        backref=db.backref(
            "findings",
            cascade="all, delete-orphan",
            passive_deletes=True,
            order_by="Finding.id",
        ),
    )


class VerificationAttempt(db.Model):
    """Audit trail of ownership proofs. Append-only."""
    __tablename__ = "verification_attempt"

    id = db.Column(db.Integer, primary_key=True)
    domain_id = db.Column(
        db.Integer,
        db.ForeignKey("domain.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    method = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False)  # verified, failed
    details = db.Column(db.String(1000), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)

    domain = db.relationship(
        "Domain",
        backref=db.backref(
            "verification_attempts",
            cascade="all, delete-orphan",
            passive_deletes=True,
        ),
    )
