# =============================================================================
# File: testme/domains/routes.py
# Description: Domain registration and ownership verification routes.
#
#   - POST   /domains                       add a domain, issue its token
#   - GET    /domains                       list the caller's domains
#   - GET    /domains/<id>                  one domain with instructions
#   - DELETE /domains/<id>                  409 while a scan is active
#   - POST   /domains/<id>/verify           run one verification attempt
#   - GET    /domains/<id>/verifications    attempt log, newest first
# =============================================================================

from __future__ import annotations

from flask import Blueprint, request, jsonify

from testme.auth.decorators import require_auth, current_owner_id
from testme.verification.service import (
    attempt_to_ui,
    create_domain,
    delete_domain,
    domain_to_ui,
    get_domain,
    list_attempts,
    list_domains,
    verify_domain,
)

domains_bp = Blueprint("domains", __name__)


# ---- Domains ----

@domains_bp.post("/domains")
@require_auth
def add_domain():
    body = request.get_json(silent=True) or {}
    d = create_domain(current_owner_id(), body.get("domain") or "")
    return jsonify(domain_to_ui(d, include_instructions=True)), 201


@domains_bp.get("/domains")
@require_auth
def get_domains():
    return jsonify([domain_to_ui(d) for d in list_domains(current_owner_id())]), 200


@domains_bp.get("/domains/<int:domain_id>")
@require_auth
def get_one_domain(domain_id: int):
    d = get_domain(current_owner_id(), domain_id)
    return jsonify(domain_to_ui(d, include_instructions=not d.is_verified)), 200


@domains_bp.delete("/domains/<int:domain_id>")
@require_auth
def remove_domain(domain_id: int):
    delete_domain(current_owner_id(), domain_id)
    return jsonify(message="Domain deleted"), 200


# ---- Verification ----

@domains_bp.post("/domains/<int:domain_id>/verify")
@require_auth
def verify(domain_id: int):
    body = request.get_json(silent=True) or {}
    result = verify_domain(current_owner_id(), domain_id, body.get("method") or "")

    out = {
        "verified": result.verified,
        "method": result.method,
    }
    if result.diagnostic:
        out["diagnostic"] = result.diagnostic
    if result.details:
        out["details"] = result.details
    return jsonify(out), 200


@domains_bp.get("/domains/<int:domain_id>/verifications")
@require_auth
def verification_log(domain_id: int):
    attempts = list_attempts(current_owner_id(), domain_id)
    return jsonify([attempt_to_ui(a) for a in attempts]), 200
