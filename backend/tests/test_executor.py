"""StepExecutor: one step per call, compare-and-advance, failure semantics."""
import requests

import pytest

from testme.errors import NotFoundError
from testme.models import (
    SCAN_CANCELLED,
    SCAN_COMPLETED,
    SCAN_FAILED,
    SCAN_RUNNING,
    Finding,
    Scan,
)
from testme.scanner.base import FindingDraft
from testme.scanner.executor import StepExecutor, step_progress

from fakes import StaticCheck, make_steps, offline_context


def _executor(checks, n=None):
    n = n if n is not None else len(checks)
    return StepExecutor(
        steps=make_steps(n),
        checks={c.category: c for c in checks},
        context_factory=offline_context,
    )


def _findings(db, scan_id):
    return db.session.query(Finding).filter_by(scan_id=scan_id).order_by(Finding.id).all()


def test_six_steps_complete_the_scan(app, db, make_domain, make_scan):
    checks = [StaticCheck(f"cat{i}", ["low"] if i % 2 else []) for i in range(6)]
    executor = _executor(checks)
    scan = make_scan(make_domain())

    progress = []
    for i in range(6):
        result = executor.execute_step(scan.id)
        assert result.current_step == i
        progress.append(result.progress)
        assert result.completed is (i == 5)

    assert progress == [16, 33, 50, 66, 83, 100]
    assert result.next_step is None
    assert result.status == SCAN_COMPLETED

    scan = db.session.get(Scan, scan.id)
    assert scan.status == SCAN_COMPLETED
    assert scan.progress == 100
    assert scan.current_step_index == 6
    assert scan.started_at is not None
    assert scan.completed_at is not None
    assert [c.calls for c in checks] == [1] * 6
    assert len(_findings(db, scan.id)) == 3


def test_seventh_call_is_idempotent(app, db, make_domain, make_scan):
    checks = [StaticCheck(f"cat{i}", ["medium"]) for i in range(6)]
    executor = _executor(checks)
    scan = make_scan(make_domain())
    for _ in range(6):
        executor.execute_step(scan.id)
    before = len(_findings(db, scan.id))

    result = executor.execute_step(scan.id)

    assert result.completed is True
    assert result.status == SCAN_COMPLETED
    assert result.progress == 100
    assert len(_findings(db, scan.id)) == before
    assert [c.calls for c in checks] == [1] * 6


def test_first_step_moves_pending_to_running(app, db, make_domain, make_scan):
    executor = _executor([StaticCheck("cat0"), StaticCheck("cat1")])
    scan = make_scan(make_domain())

    result = executor.execute_step(scan.id)

    assert result.completed is False
    assert result.next_step == 1
    assert result.status == SCAN_RUNNING
    assert db.session.get(Scan, scan.id).status == SCAN_RUNNING


@pytest.mark.parametrize("status", [SCAN_COMPLETED, SCAN_FAILED, SCAN_CANCELLED])
def test_terminal_scan_is_not_touched(app, db, make_domain, make_scan, status):
    check = StaticCheck("cat0", ["high"])
    executor = _executor([check, StaticCheck("cat1")])
    scan = make_scan(make_domain(), status=status, step=1)

    result = executor.execute_step(scan.id)

    assert result.completed is True
    assert result.status == status
    assert check.calls == 0
    scan = db.session.get(Scan, scan.id)
    assert scan.status == status
    assert scan.current_step_index == 1
    assert _findings(db, scan.id) == []


def test_findings_are_tagged_with_category_and_step(app, db, make_domain, make_scan):
    executor = _executor([StaticCheck("cat0"), StaticCheck("cat1", ["high", "info"])])
    scan = make_scan(make_domain(), status=SCAN_RUNNING, step=1)

    result = executor.execute_step(scan.id)

    assert result.findings_added == 2
    rows = _findings(db, scan.id)
    assert {(f.category, f.step_index) for f in rows} == {("cat1", 1)}
    assert sorted(f.severity for f in rows) == ["high", "info"]


def test_probe_error_becomes_info_finding_and_scan_continues(app, db, make_domain, make_scan):
    flaky = StaticCheck("cat0", exc=requests.ConnectionError("connection refused"))
    executor = _executor([flaky, StaticCheck("cat1")])
    scan = make_scan(make_domain())

    result = executor.execute_step(scan.id)

    assert result.completed is False
    assert result.status == SCAN_RUNNING
    rows = _findings(db, scan.id)
    assert len(rows) == 1
    assert rows[0].severity == "info"
    assert rows[0].category == "cat0"
    assert "ConnectionError" in rows[0].description


def test_unexpected_error_fails_the_scan(app, db, make_domain, make_scan):
    broken = StaticCheck("cat1", exc=ValueError("parser blew up"))
    executor = _executor([StaticCheck("cat0", ["low"]), broken, StaticCheck("cat2")])
    scan = make_scan(make_domain())

    executor.execute_step(scan.id)
    result = executor.execute_step(scan.id)

    assert result.completed is True
    assert result.status == SCAN_FAILED
    assert "ValueError" in result.error
    scan = db.session.get(Scan, scan.id)
    assert scan.status == SCAN_FAILED
    assert "parser blew up" in scan.error_message
    assert scan.completed_at is not None
    # step 0 findings survive, nothing was recorded for the failed step
    assert [f.category for f in _findings(db, scan.id)] == ["cat0"]

    # no automatic retry
    again = executor.execute_step(scan.id)
    assert again.status == SCAN_FAILED
    assert broken.calls == 1


class UnstorableCheck(StaticCheck):
    """Produces a finding whose evidence cannot be serialized to JSON."""

    def execute(self, ctx):
        drafts = super().execute(ctx)
        drafts.append(FindingDraft(
            template_id="unstorable",
            title="Unstorable evidence",
            severity="low",
            description="details hold a non-JSON value",
            details={"when": object()},
        ))
        return drafts


def test_error_while_saving_step_fails_the_scan(app, db, make_domain, make_scan):
    broken = UnstorableCheck("cat1", ["medium"])
    executor = _executor([StaticCheck("cat0", ["low"]), broken, StaticCheck("cat2")])
    scan = make_scan(make_domain())

    executor.execute_step(scan.id)
    result = executor.execute_step(scan.id)

    assert result.completed is True
    assert result.status == SCAN_FAILED
    assert "Saving step" in result.error
    scan = db.session.get(Scan, scan.id)
    assert scan.status == SCAN_FAILED
    assert scan.current_step_index == 1
    assert scan.error_message.startswith("Saving step 'Step 1' failed")
    # the rolled-back step left nothing behind
    assert [f.category for f in _findings(db, scan.id)] == ["cat0"]

    again = executor.execute_step(scan.id)
    assert again.status == SCAN_FAILED
    assert broken.calls == 1


def test_missing_check_registration_fails_the_scan(app, db, make_domain, make_scan):
    executor = StepExecutor(steps=make_steps(2), checks={}, context_factory=offline_context)
    scan = make_scan(make_domain())
    result = executor.execute_step(scan.id)
    assert result.status == SCAN_FAILED
    assert "LookupError" in result.error


def test_unknown_scan_raises_not_found(app):
    with pytest.raises(NotFoundError):
        _executor([StaticCheck("cat0")]).execute_step(424242)


def test_concurrent_advance_discards_duplicate_findings(app, db, make_domain, make_scan):
    scan = make_scan(make_domain(), status=SCAN_RUNNING)

    def other_invocation_wins(ctx):
        db.session.query(Scan).filter(Scan.id == ctx.scan_id).update(
            {Scan.current_step_index: 1}, synchronize_session=False,
        )
        db.session.commit()

    executor = _executor([StaticCheck("cat0", ["high"], hook=other_invocation_wins), StaticCheck("cat1")])
    result = executor.execute_step(scan.id)

    assert result.completed is False
    assert result.current_step == 1
    assert result.findings_added == 0
    assert db.session.get(Scan, scan.id).current_step_index == 1
    assert _findings(db, scan.id) == []


def test_cancel_during_step_keeps_in_flight_findings(app, db, make_domain, make_scan):
    scan = make_scan(make_domain(), status=SCAN_RUNNING)

    def cancelled_meanwhile(ctx):
        db.session.query(Scan).filter(Scan.id == ctx.scan_id).update(
            {Scan.status: SCAN_CANCELLED}, synchronize_session=False,
        )
        db.session.commit()

    check = StaticCheck("cat0", ["medium"], hook=cancelled_meanwhile)
    executor = _executor([check, StaticCheck("cat1")])
    result = executor.execute_step(scan.id)

    assert result.completed is True
    assert result.status == SCAN_CANCELLED
    scan = db.session.get(Scan, scan.id)
    assert scan.status == SCAN_CANCELLED
    assert scan.current_step_index == 0
    assert [f.severity for f in _findings(db, scan.id)] == ["medium"]

    # the next entry observes the terminal state
    executor.execute_step(scan.id)
    assert check.calls == 1


def test_step_progress():
    assert step_progress(0, 8) == 0
    assert step_progress(4, 8) == 50
    assert step_progress(8, 8) == 100
    assert step_progress(0, 0) == 100


def test_from_config_reads_timeouts_and_resolvers():
    executor = StepExecutor.from_config({
        "PROBE_TIMEOUT_SECONDS": 3,
        "STEP_BUDGET_SECONDS": 20,
        "DNS_RESOLVERS": ["9.9.9.9"],
    })
    assert executor.probe_timeout == 3
    assert executor.budget_seconds == 20
    assert executor.nameservers == ["9.9.9.9"]
    assert [s.category for s in executor.steps][:2] == ["transport", "headers"]
    ctx = executor.build_context("example.com", 1, 0)
    assert ctx.http.timeout == 3
    assert ctx.budget_seconds == 20
