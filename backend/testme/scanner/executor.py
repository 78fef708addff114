# testme/scanner/executor.py
"""
StepExecutor: runs exactly one catalog step per invocation.

A single call must fit into a short wall-clock window, so a scan advances one
category at a time:

    1. Load the scan and its persisted current_step_index
    2. Terminal scan → return {completed: true} without touching anything
    3. Run the check for SCAN_STEPS[current_step_index] against the domain
    4. In one transaction: compare-and-advance the cursor, append findings
    5. Return the new step pointers so the caller knows whether to call again

The cursor advance is a conditional UPDATE guarded on the index we read and
on the scan still being active. If zero rows match, someone else got there
first:
    - another invocation advanced the cursor: this step's findings are
      dropped, they were already recorded once
    - the scan was cancelled while the step was in flight: the cursor stays,
      the findings the step observed are kept
Either way the current persisted state is returned.

A storage error while recording the step (the UPDATE, the finding rows or
the commit) is rolled back and fails the scan, same as a check error.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from testme.errors import NotFoundError, ServiceError
from testme.extensions import db
from testme.models import (
    ACTIVE_SCAN_STATUSES,
    SCAN_CANCELLED,
    SCAN_COMPLETED,
    SCAN_FAILED,
    SCAN_RUNNING,
    Finding,
    Scan,
    now_utc,
)
from testme.scanner.base import BaseCheck, CheckResult, ScanContext
from testme.scanner.catalog import SCAN_STEPS, CheckStep
from testme.scanner.checks import ALL_CHECKS
from testme.scanner.engines import DnsClient, HttpClient, TlsInspector

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 10
DEFAULT_STEP_BUDGET = 45


@dataclass
class StepResult:
    """
    Outcome of one executeScanStep call.

    current_step: index of the step this call ran (or the cursor, if nothing ran)
    next_step:    index to run next, None once the scan is terminal
    """
    completed: bool
    current_step: int
    next_step: Optional[int]
    progress: int
    status: str
    findings_added: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "completed": self.completed,
            "currentStep": self.current_step,
            "nextStep": self.next_step,
            "progress": self.progress,
            "status": self.status,
            "findingsAdded": self.findings_added,
        }
        if self.error:
            out["error"] = self.error
        return out


def step_progress(index: int, total: int) -> int:
    if total <= 0 or index >= total:
        return 100
    return int(index / total * 100)


class StepExecutor:

    def __init__(
        self,
        steps: Optional[Sequence[CheckStep]] = None,
        checks: Optional[Mapping[str, Any]] = None,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        budget_seconds: float = DEFAULT_STEP_BUDGET,
        nameservers: Optional[Sequence[str]] = None,
        context_factory: Optional[Callable[..., ScanContext]] = None,
    ):
        self.steps = list(steps) if steps is not None else list(SCAN_STEPS)
        self.checks = dict(checks) if checks is not None else dict(ALL_CHECKS)
        self.probe_timeout = probe_timeout
        self.budget_seconds = budget_seconds
        self.nameservers = list(nameservers) if nameservers else None
        self.context_factory = context_factory or self.build_context

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **kwargs) -> "StepExecutor":
        return cls(
            probe_timeout=config.get("PROBE_TIMEOUT_SECONDS", DEFAULT_PROBE_TIMEOUT),
            budget_seconds=config.get("STEP_BUDGET_SECONDS", DEFAULT_STEP_BUDGET),
            nameservers=config.get("DNS_RESOLVERS"),
            **kwargs,
        )

    def build_context(self, domain: str, scan_id: int, step_index: int) -> ScanContext:
        return ScanContext(
            domain=domain,
            scan_id=scan_id,
            step_index=step_index,
            http=HttpClient(timeout=self.probe_timeout),
            tls=TlsInspector(timeout=self.probe_timeout),
            dns=DnsClient(self.nameservers, timeout=min(self.probe_timeout, 5)),
            budget_seconds=self.budget_seconds,
        )

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------

    def execute_step(self, scan_id: int) -> StepResult:
        scan = db.session.get(Scan, scan_id)
        if not scan:
            raise NotFoundError("Scan not found.")

        if scan.is_terminal:
            return self.snapshot(scan)

        index = scan.current_step_index
        total = len(self.steps)
        if index >= total:
            # cursor already past the catalog; only the status flip is missing
            return self._record(scan, index, CheckResult(check_name="", category=""), "finalize")

        step = self.steps[index]
        domain_name = scan.domain.name
        logger.info(f"Scan {scan_id}: step {index + 1}/{total} '{step.name}' for {domain_name}")

        start = time.monotonic()
        try:
            check = self._get_check(step.category)
            ctx = self.context_factory(domain_name, scan_id, index)
            result = check.run(ctx)
        except Exception as e:
            logger.exception(f"Scan {scan_id}: step '{step.name}' failed")
            db.session.rollback()
            return self._fail(scan_id, index, f"Step '{step.name}' failed: {type(e).__name__}: {e}")

        logger.info(
            f"Scan {scan_id}: step '{step.name}' produced {len(result.findings)} finding(s) "
            f"in {round(time.monotonic() - start, 2)}s"
            + (" (partial)" if result.partial else "")
        )
        return self._record(scan, index, result, step.name)

    def snapshot(self, scan: Scan) -> StepResult:
        terminal = scan.is_terminal
        return StepResult(
            completed=terminal,
            current_step=scan.current_step_index,
            next_step=None if terminal else scan.current_step_index,
            progress=scan.progress,
            status=scan.status,
            error=scan.error_message if scan.status == SCAN_FAILED else None,
        )

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _get_check(self, category: str) -> BaseCheck:
        check = self.checks.get(category)
        if check is None:
            raise LookupError(f"No check registered for category '{category}'")
        return check() if isinstance(check, type) else check

    def _record(self, scan: Scan, index: int, result: CheckResult, step_name: str) -> StepResult:
        """Persist the step; a storage error fails the scan instead of escaping."""
        scan_id = scan.id
        try:
            return self._advance(scan, index, result)
        except ServiceError:
            raise
        except Exception as e:
            logger.exception(f"Scan {scan_id}: saving step '{step_name}' failed")
            db.session.rollback()
            return self._fail(scan_id, index, f"Saving step '{step_name}' failed: {type(e).__name__}: {e}")

    def _advance(self, scan: Scan, index: int, result: CheckResult) -> StepResult:
        scan_id = scan.id
        total = len(self.steps)
        new_index = min(index + 1, total)
        completed = new_index >= total
        now = now_utc()

        values: Dict[Any, Any] = {
            Scan.current_step_index: new_index,
            Scan.progress: step_progress(new_index, total),
            Scan.status: SCAN_COMPLETED if completed else SCAN_RUNNING,
            Scan.updated_at: now,
        }
        if scan.started_at is None:
            values[Scan.started_at] = now
        if completed:
            values[Scan.completed_at] = now

        updated = (
            db.session.query(Scan)
            .filter(
                Scan.id == scan_id,
                Scan.current_step_index == index,
                Scan.status.in_(ACTIVE_SCAN_STATUSES),
            )
            .update(values, synchronize_session=False)
        )

        if updated != 1:
            db.session.rollback()
            db.session.expire_all()
            current = db.session.get(Scan, scan_id)
            if not current:
                raise NotFoundError("Scan not found.")

            if current.status == SCAN_CANCELLED and current.current_step_index == index and result.findings:
                self._add_findings(scan_id, index, result)
                db.session.commit()
                db.session.expire_all()
                logger.info(
                    f"Scan {scan_id}: cancelled during step {index}; "
                    f"kept {len(result.findings)} finding(s) from the in-flight step"
                )
            else:
                logger.warning(
                    f"Scan {scan_id}: cursor moved or scan left active state during step {index}; "
                    f"discarding {len(result.findings)} finding(s)"
                )
            return self.snapshot(db.session.get(Scan, scan_id))

        self._add_findings(scan_id, index, result)
        db.session.commit()
        db.session.expire_all()

        if completed:
            logger.info(f"Scan {scan_id}: completed")

        return StepResult(
            completed=completed,
            current_step=index,
            next_step=None if completed else new_index,
            progress=step_progress(new_index, total),
            status=SCAN_COMPLETED if completed else SCAN_RUNNING,
            findings_added=len(result.findings),
        )

    def _add_findings(self, scan_id: int, index: int, result: CheckResult) -> None:
        for draft in result.findings:
            db.session.add(Finding(
                scan_id=scan_id,
                category=draft.category or result.category,
                step_index=index,
                severity=draft.severity,
                title=draft.title[:255],
                description=(draft.description or "")[:2000],
                affected_url=draft.affected_url[:2048] if draft.affected_url else None,
                recommendation=(draft.recommendation or "")[:2000],
                cwe=draft.cwe,
                details_json=draft.details or None,
            ))

    def _fail(self, scan_id: int, index: int, message: str) -> StepResult:
        now = now_utc()
        updated = (
            db.session.query(Scan)
            .filter(Scan.id == scan_id, Scan.status.in_(ACTIVE_SCAN_STATUSES))
            .update(
                {
                    Scan.status: SCAN_FAILED,
                    Scan.error_message: message[:500],
                    Scan.completed_at: now,
                    Scan.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        db.session.commit()
        db.session.expire_all()

        scan = db.session.get(Scan, scan_id)
        if not updated:
            # cancelled (or finished) concurrently; its terminal state wins
            return self.snapshot(scan)

        logger.error(f"Scan {scan_id}: marked failed at step {index}: {message}")
        return StepResult(
            completed=True,
            current_step=index,
            next_step=None,
            progress=scan.progress,
            status=SCAN_FAILED,
            error=message[:500],
        )
