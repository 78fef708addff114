# testme/verification/service.py
"""
Domain service: create, look up, verify and delete domains.

All functions take the caller's owner id and raise ServiceError subclasses;
the routes only translate HTTP to these calls.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from testme.errors import AuthorizationError, ConflictError, InputError, NotFoundError
from testme.extensions import db
from testme.models import (
    ACTIVE_SCAN_STATUSES,
    VERIFICATION_METHODS,
    Domain,
    Scan,
    VerificationAttempt,
    now_utc,
)
from testme.utils.domain import clean_domain, generate_verification_token
from testme.verification import ALL_VERIFIERS, BaseVerifier, VerificationResult, get_verifier

logger = logging.getLogger(__name__)


def create_domain(owner_id: str, raw_domain: str) -> Domain:
    name = clean_domain(raw_domain)

    existing = Domain.query.filter_by(owner_id=owner_id, name=name).first()
    if existing:
        raise ConflictError(f"Domain {name} has already been added.")

    d = Domain(
        owner_id=owner_id,
        name=name,
        verification_token=generate_verification_token(),
        is_verified=False,
    )
    db.session.add(d)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Domain {name} has already been added.")

    logger.info(f"Domain {name} (id={d.id}) created for owner {owner_id}")
    return d


def list_domains(owner_id: str) -> List[Domain]:
    return (
        Domain.query
        .filter_by(owner_id=owner_id)
        .order_by(Domain.created_at.desc(), Domain.id.desc())
        .all()
    )


def get_domain(owner_id: str, domain_id: int) -> Domain:
    d = db.session.get(Domain, domain_id)
    if not d:
        raise NotFoundError("Domain not found.")
    if d.owner_id != owner_id:
        raise AuthorizationError("You do not have access to this domain.")
    return d


def verification_instructions(d: Domain) -> Dict[str, Dict[str, str]]:
    return {
        method: cls().instructions(d.name, d.verification_token)
        for method, cls in ALL_VERIFIERS.items()
    }


def verify_domain(
    owner_id: str,
    domain_id: int,
    method: str,
    verifier: Optional[BaseVerifier] = None,
) -> VerificationResult:
    """
    Run one verification attempt.

    An already verified domain returns success without touching verified_at
    and without logging an attempt. Otherwise every attempt is recorded and a
    match flips is_verified exactly once.
    """
    method = (method or "").strip().lower()
    if method not in VERIFICATION_METHODS:
        raise InputError(f"method must be one of: {', '.join(VERIFICATION_METHODS)}")

    d = get_domain(owner_id, domain_id)

    if d.is_verified:
        return VerificationResult.ok(
            d.verification_method or method, already_verified=True,
        )

    if verifier is None:
        cfg = current_app.config
        verifier = get_verifier(
            method,
            timeout=cfg.get("VERIFY_TIMEOUT_SECONDS", 10),
            nameservers=cfg.get("DNS_RESOLVERS"),
        )

    result = verifier.run(d.name, d.verification_token)

    db.session.add(VerificationAttempt(
        domain_id=d.id,
        method=method,
        status="verified" if result.verified else "failed",
        details=(result.diagnostic or "Token matched")[:1000],
    ))

    if result.verified:
        # false -> true only; a concurrent winner keeps its verified_at
        db.session.query(Domain).filter(
            Domain.id == d.id,
            Domain.is_verified.is_(False),
        ).update(
            {
                Domain.is_verified: True,
                Domain.verified_at: now_utc(),
                Domain.verification_method: method,
                Domain.updated_at: now_utc(),
            },
            synchronize_session=False,
        )

    db.session.commit()
    db.session.refresh(d)

    if result.verified:
        logger.info(f"Domain {d.name} (id={d.id}) verified via {method}")
    return result


def list_attempts(owner_id: str, domain_id: int) -> List[VerificationAttempt]:
    d = get_domain(owner_id, domain_id)
    return (
        VerificationAttempt.query
        .filter_by(domain_id=d.id)
        .order_by(VerificationAttempt.created_at.desc(), VerificationAttempt.id.desc())
        .all()
    )


def delete_domain(owner_id: str, domain_id: int) -> None:
    d = get_domain(owner_id, domain_id)

    active = Scan.query.filter(
        Scan.domain_id == d.id,
        Scan.status.in_(ACTIVE_SCAN_STATUSES),
    ).first()
    if active:
        raise ConflictError("Domain has an active scan. Cancel it before deleting the domain.")

    name = d.name
    db.session.delete(d)
    db.session.commit()
    logger.info(f"Domain {name} (id={domain_id}) deleted by owner {owner_id}")


def domain_to_ui(d: Domain, include_instructions: bool = False) -> Dict[str, Any]:
    out = {
        "id": d.id,
        "name": d.name,
        "isVerified": bool(d.is_verified),
        "verifiedAt": d.verified_at.isoformat() if d.verified_at else None,
        "verificationMethod": d.verification_method,
        "verificationToken": d.verification_token,
        "createdAt": d.created_at.isoformat() if d.created_at else None,
    }
    if include_instructions:
        out["instructions"] = verification_instructions(d)
    return out


def attempt_to_ui(a: VerificationAttempt) -> Dict[str, Any]:
    return {
        "id": a.id,
        "method": a.method,
        "status": a.status,
        "details": a.details,
        "createdAt": a.created_at.isoformat() if a.created_at else None,
    }
