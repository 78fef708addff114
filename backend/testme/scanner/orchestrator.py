# testme/scanner/orchestrator.py
"""
Scan Orchestrator: owns the scan state machine.

    pending --start--> running --(n steps)--> completed
    pending|running --cancel--> cancelled
    running --fatal step error--> failed

Guards:
    create   consent given, domain verified and owned, no other active scan
             on the domain (partial unique index, violation → ConflictError)
    cancel   only from pending/running; a conditional UPDATE, so it cannot
             overwrite a terminal state written by a concurrent step
    delete   only from completed/failed/cancelled

The orchestrator never re-runs completed steps and never retries a failed
scan; retry is a new scan. Stepping itself is delegated to StepExecutor,
either directly (POST /scans/<id>/execute) or through the ScanQueue.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from testme.errors import AuthorizationError, ConflictError, InputError, NotFoundError
from testme.extensions import db
from testme.models import (
    ACTIVE_SCAN_STATUSES,
    SCAN_CANCELLED,
    SCAN_COMPLETED,
    SCAN_PENDING,
    SCAN_RUNNING,
    Finding,
    Scan,
    now_utc,
)
from testme.scanner.executor import StepExecutor, StepResult
from testme.utils.scoring import SEVERITY_ORDER, score_findings
from testme.verification.service import get_domain

logger = logging.getLogger(__name__)


class ScanOrchestrator:

    def __init__(self, executor: Optional[StepExecutor] = None, queue=None):
        self.executor = executor or StepExecutor()
        self.queue = queue

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------

    def get_scan(self, owner_id: str, scan_id: int) -> Scan:
        scan = db.session.get(Scan, scan_id)
        if not scan:
            raise NotFoundError("Scan not found.")
        if scan.owner_id != owner_id:
            raise AuthorizationError("You do not have access to this scan.")
        return scan

    def list_scans(self, owner_id: str, domain_id: Optional[int] = None) -> List[Scan]:
        q = Scan.query.filter(Scan.owner_id == owner_id)
        if domain_id is not None:
            q = q.filter(Scan.domain_id == domain_id)
        return q.order_by(Scan.created_at.desc(), Scan.id.desc()).all()

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------

    def create_scan(self, owner_id: str, domain_id: int, consent: bool) -> Scan:
        if consent is not True:
            raise InputError("You must confirm that you are authorized to scan this domain (consent=true).")

        domain = get_domain(owner_id, domain_id)
        if not domain.is_verified:
            raise AuthorizationError("Domain ownership has not been verified yet.")

        active = Scan.query.filter(
            Scan.domain_id == domain.id,
            Scan.status.in_(ACTIVE_SCAN_STATUSES),
        ).first()
        if active:
            raise ConflictError(f"Scan {active.id} is already active for {domain.name}.")

        scan = Scan(
            domain_id=domain.id,
            owner_id=owner_id,
            status=SCAN_PENDING,
            progress=0,
            current_step_index=0,
            consent_given=True,
        )
        db.session.add(scan)
        try:
            db.session.commit()
        except IntegrityError:
            # lost the race against a concurrent create
            db.session.rollback()
            raise ConflictError(f"Another scan is already active for {domain.name}.")

        logger.info(f"Scan {scan.id} created for {domain.name} by owner {owner_id}")
        return scan

    def start(self, owner_id: str, scan_id: int) -> Scan:
        scan = self.get_scan(owner_id, scan_id)
        if scan.is_terminal:
            raise ConflictError(f"Scan is already {scan.status}; create a new scan instead.")
        if not scan.domain.is_verified:
            raise AuthorizationError("Domain ownership has not been verified yet.")

        if scan.status == SCAN_PENDING:
            now = now_utc()
            db.session.query(Scan).filter(
                Scan.id == scan.id,
                Scan.status == SCAN_PENDING,
            ).update(
                {Scan.status: SCAN_RUNNING, Scan.started_at: now, Scan.updated_at: now},
                synchronize_session=False,
            )
            db.session.commit()
            db.session.refresh(scan)
            logger.info(f"Scan {scan.id} started")

        if self.queue is not None and scan.is_active:
            self.queue.enqueue(scan.id)
        return scan

    def execute_step(self, owner_id: str, scan_id: int) -> StepResult:
        scan = self.get_scan(owner_id, scan_id)
        return self.executor.execute_step(scan.id)

    def cancel(self, owner_id: str, scan_id: int) -> Scan:
        scan = self.get_scan(owner_id, scan_id)

        now = now_utc()
        updated = db.session.query(Scan).filter(
            Scan.id == scan.id,
            Scan.status.in_(ACTIVE_SCAN_STATUSES),
        ).update(
            {Scan.status: SCAN_CANCELLED, Scan.completed_at: now, Scan.updated_at: now},
            synchronize_session=False,
        )
        db.session.commit()
        db.session.refresh(scan)

        if not updated:
            raise ConflictError(f"Only pending or running scans can be cancelled (scan is {scan.status}).")

        if self.queue is not None:
            self.queue.cancel(scan.id)
        logger.info(f"Scan {scan.id} cancelled at step {scan.current_step_index}")
        return scan

    def delete(self, owner_id: str, scan_id: int) -> None:
        scan = self.get_scan(owner_id, scan_id)
        if not scan.is_terminal:
            raise ConflictError("Only completed, failed or cancelled scans can be deleted. Cancel the scan first.")
        db.session.delete(scan)
        db.session.commit()
        logger.info(f"Scan {scan_id} deleted by owner {owner_id}")

    # -------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------

    def assessed_categories(self, scan: Scan) -> List[str]:
        steps = self.executor.steps
        if scan.status == SCAN_COMPLETED:
            return [s.category for s in steps]
        return [s.category for s in steps if s.index < scan.current_step_index]

    def get_scan_summary(self, owner_id: str, scan_id: int) -> Dict[str, Any]:
        scan = self.get_scan(owner_id, scan_id)
        findings = list(scan.findings)
        summary = score_findings(
            findings,
            steps=self.executor.steps,
            assessed=self.assessed_categories(scan),
        )
        rank = {sev: i for i, sev in enumerate(SEVERITY_ORDER)}
        findings.sort(key=lambda f: (rank.get(f.severity, len(rank)), f.id))
        return {
            "scan": scan_to_ui(scan, total_steps=len(self.executor.steps)),
            "findings": [finding_to_ui(f) for f in findings],
            "summary": summary.to_dict(),
        }


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------

def scan_to_ui(s: Scan, total_steps: Optional[int] = None) -> Dict[str, Any]:
    out = {
        "id": s.id,
        "domainId": s.domain_id,
        "domain": s.domain.name if s.domain else None,
        "status": s.status,
        "progress": s.progress,
        "currentStepIndex": s.current_step_index,
        "consentGiven": bool(s.consent_given),
        "createdAt": s.created_at.isoformat() if s.created_at else None,
        "startedAt": s.started_at.isoformat() if s.started_at else None,
        "completedAt": s.completed_at.isoformat() if s.completed_at else None,
        "errorMessage": s.error_message,
    }
    if total_steps is not None:
        out["totalSteps"] = total_steps
    return out


def finding_to_ui(f: Finding) -> Dict[str, Any]:
    return {
        "id": f.id,
        "scanId": f.scan_id,
        "category": f.category,
        "stepIndex": f.step_index,
        "severity": f.severity,
        "title": f.title,
        "description": f.description,
        "affectedUrl": f.affected_url,
        "recommendation": f.recommendation,
        "cwe": f.cwe,
        "details": f.details_json or {},
        "createdAt": f.created_at.isoformat() if f.created_at else None,
    }
