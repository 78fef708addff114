# =============================================================================
# File: testme/scans/routes.py
# Description: Scan lifecycle routes.
#
#   - GET    /scans/steps            the ordered check catalog
#   - POST   /scans                  create (consent + verified domain required)
#   - GET    /scans                  list, optionally ?domainId=
#   - GET    /scans/<id>             scan, findings and score summary
#   - POST   /scans/<id>/start       queue for background execution
#   - POST   /scans/<id>/execute     run exactly one step now
#   - POST   /scans/<id>/cancel
#   - DELETE /scans/<id>             terminal scans only
# =============================================================================

from __future__ import annotations

from flask import Blueprint, request, jsonify, current_app

from testme.auth.decorators import require_auth, current_owner_id
from testme.errors import InputError
from testme.scanner.catalog import steps_to_ui
from testme.scanner.orchestrator import ScanOrchestrator, scan_to_ui

scans_bp = Blueprint("scans", __name__)


def _orchestrator() -> ScanOrchestrator:
    return current_app.extensions["scan_orchestrator"]


def _int_or_none(value, field: str):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InputError(f"{field} must be an integer")


# ---- Catalog ----

@scans_bp.get("/scans/steps")
@require_auth
def get_steps():
    return jsonify(steps_to_ui(_orchestrator().executor.steps)), 200


# ---- Scans ----

@scans_bp.post("/scans")
@require_auth
def create_scan():
    body = request.get_json(silent=True) or {}
    domain_id = _int_or_none(body.get("domainId"), "domainId")
    if domain_id is None:
        raise InputError("domainId is required")

    orch = _orchestrator()
    scan = orch.create_scan(current_owner_id(), domain_id, body.get("consent") is True)
    return jsonify(scan_to_ui(scan, total_steps=len(orch.executor.steps))), 201


@scans_bp.get("/scans")
@require_auth
def list_scans():
    domain_id = _int_or_none(request.args.get("domainId"), "domainId")
    orch = _orchestrator()
    total = len(orch.executor.steps)
    scans = orch.list_scans(current_owner_id(), domain_id=domain_id)
    return jsonify([scan_to_ui(s, total_steps=total) for s in scans]), 200


@scans_bp.get("/scans/<int:scan_id>")
@require_auth
def get_scan(scan_id: int):
    return jsonify(_orchestrator().get_scan_summary(current_owner_id(), scan_id)), 200


@scans_bp.delete("/scans/<int:scan_id>")
@require_auth
def delete_scan(scan_id: int):
    _orchestrator().delete(current_owner_id(), scan_id)
    return jsonify(message="Scan deleted"), 200


# ---- Execution ----

@scans_bp.post("/scans/<int:scan_id>/start")
@require_auth
def start_scan(scan_id: int):
    orch = _orchestrator()
    scan = orch.start(current_owner_id(), scan_id)
    out = scan_to_ui(scan, total_steps=len(orch.executor.steps))
    out["queued"] = bool(orch.queue and orch.queue.is_queued(scan.id))
    return jsonify(out), 202


@scans_bp.post("/scans/<int:scan_id>/execute")
@require_auth
def execute_step(scan_id: int):
    orch = _orchestrator()
    result = orch.execute_step(current_owner_id(), scan_id)
    out = result.to_dict()
    out["steps"] = steps_to_ui(orch.executor.steps)
    return jsonify(out), 200


@scans_bp.post("/scans/<int:scan_id>/cancel")
@require_auth
def cancel_scan(scan_id: int):
    orch = _orchestrator()
    scan = orch.cancel(current_owner_id(), scan_id)
    return jsonify(scan_to_ui(scan, total_steps=len(orch.executor.steps))), 200
