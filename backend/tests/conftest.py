"""
Shared pytest fixtures for backend tests.

Provides an in-memory SQLite app, authenticated client helpers, database
factories and offline fakes for the HTTP/TLS/DNS probe clients.
"""
from __future__ import annotations

from typing import Callable, Dict

import pytest

from testme import create_app
from testme.auth.tokens import create_access_token
from testme.extensions import db as _db
from testme.models import SCAN_PENDING, Domain, Scan, now_utc
from testme.scanner.base import ScanContext
from testme.utils.domain import generate_verification_token

from fakes import OWNER, FakeDns, FakeHttp, FakeTls, good_cert


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "SECRET_KEY": "test-secret",
        "SCAN_QUEUE_ENABLED": False,
    })
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app) -> Callable[[str], Dict[str, str]]:
    def _headers(owner_id: str = OWNER) -> Dict[str, str]:
        token = create_access_token(secret_key=app.config["SECRET_KEY"], owner_id=owner_id)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ---- Factories ----

@pytest.fixture
def make_domain(db):
    def _make(name: str = "example.com", owner_id: str = OWNER, verified: bool = True) -> Domain:
        d = Domain(
            owner_id=owner_id,
            name=name,
            verification_token=generate_verification_token(),
            is_verified=verified,
            verified_at=now_utc() if verified else None,
            verification_method="dns_txt" if verified else None,
        )
        db.session.add(d)
        db.session.commit()
        return d
    return _make


@pytest.fixture
def make_scan(db):
    def _make(domain: Domain, status: str = SCAN_PENDING, step: int = 0) -> Scan:
        s = Scan(
            domain_id=domain.id,
            owner_id=domain.owner_id,
            status=status,
            current_step_index=step,
            consent_given=True,
        )
        db.session.add(s)
        db.session.commit()
        return s
    return _make


@pytest.fixture
def probe_context():
    def _ctx(http=None, tls=None, dns=None, domain="example.com", budget_seconds=45.0) -> ScanContext:
        return ScanContext(
            domain=domain,
            http=http or FakeHttp(),
            tls=tls or FakeTls(cert=good_cert()),
            dns=dns or FakeDns(),
            budget_seconds=budget_seconds,
        )
    return _ctx
