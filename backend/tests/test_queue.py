"""ScanQueue: work items, cancellation tokens, draining."""
from unittest import mock

import pytest

from testme.errors import NotFoundError
from testme.models import SCAN_CANCELLED, SCAN_COMPLETED, SCAN_PENDING, SCAN_RUNNING, Scan
from testme.scanner.executor import StepExecutor, StepResult
from testme.scanner.queue import ScanQueue

from fakes import StaticCheck, make_steps, offline_context


@pytest.fixture
def executor():
    return StepExecutor(
        steps=make_steps(2),
        checks={"cat0": StaticCheck("cat0", ["low"]), "cat1": StaticCheck("cat1")},
        context_factory=offline_context,
    )


def test_enqueue_is_idempotent():
    q = ScanQueue(mock.Mock())
    first = q.enqueue(7)
    assert q.enqueue(7) is first
    assert q.queued_ids() == [7]


def test_cancel_sets_token_and_removes_item():
    q = ScanQueue(mock.Mock())
    item = q.enqueue(7)

    assert q.cancel(7) is True
    assert item.cancelled
    assert not q.is_queued(7)
    assert q.cancel(7) is False


def test_enqueue_after_cancel_creates_fresh_item():
    q = ScanQueue(mock.Mock())
    old = q.enqueue(7)
    q.cancel(7)
    new = q.enqueue(7)
    assert new is not old
    assert not new.cancelled


def test_drain_runs_one_step_per_scan_until_completed(app, db, executor, make_domain, make_scan):
    a = make_scan(make_domain("a.example.com"), status=SCAN_RUNNING)
    b = make_scan(make_domain("b.example.com"), status=SCAN_RUNNING)
    q = ScanQueue(executor)
    q.enqueue(a.id)
    q.enqueue(b.id)

    assert q.drain() == 2
    assert db.session.get(Scan, a.id).current_step_index == 1
    assert db.session.get(Scan, b.id).current_step_index == 1
    assert q.queued_ids() == sorted([a.id, b.id])

    assert q.drain() == 2
    assert q.queued_ids() == []
    assert db.session.get(Scan, a.id).status == SCAN_COMPLETED
    assert db.session.get(Scan, b.id).status == SCAN_COMPLETED

    assert q.drain() == 0


def test_finished_item_logs_time_in_queue(app, executor, make_domain, make_scan, caplog):
    scan = make_scan(make_domain(), status=SCAN_RUNNING, step=1)
    q = ScanQueue(executor)
    item = q.enqueue(scan.id)
    item.enqueued_at -= 42

    with caplog.at_level("INFO", logger="testme.scanner.queue"):
        q.drain()

    assert not q.is_queued(scan.id)
    assert "after 1 queued step(s) in 42s" in caplog.text


def test_drain_drops_scans_that_no_longer_exist():
    executor = mock.Mock()
    executor.execute_step.side_effect = NotFoundError("Scan not found.")
    q = ScanQueue(executor)
    q.enqueue(99)

    assert q.drain() == 0
    assert not q.is_queued(99)


def test_drain_drops_terminal_scans(app, executor, make_domain, make_scan):
    scan = make_scan(make_domain(), status=SCAN_CANCELLED)
    q = ScanQueue(executor)
    q.enqueue(scan.id)

    q.drain()

    assert not q.is_queued(scan.id)
    assert executor.checks["cat0"].calls == 0


def test_unexpected_error_keeps_item_for_next_tick(app):
    executor = mock.Mock()
    executor.execute_step.side_effect = [
        RuntimeError("database went away"),
        StepResult(completed=True, current_step=1, next_step=None, progress=100, status=SCAN_COMPLETED),
    ]
    q = ScanQueue(executor)
    q.enqueue(5)

    assert q.drain() == 0
    assert q.is_queued(5)

    assert q.drain() == 1
    assert not q.is_queued(5)


def test_items_in_flight_are_skipped():
    executor = mock.Mock()
    q = ScanQueue(executor)
    q.enqueue(1)
    q._in_flight.add(1)

    assert q.drain() == 0
    executor.execute_step.assert_not_called()


def test_cancel_while_step_runs_drops_item():
    q = ScanQueue(mock.Mock())

    def step(scan_id):
        q.cancel(scan_id)
        return StepResult(completed=False, current_step=0, next_step=1, progress=50, status=SCAN_RUNNING)

    q.executor.execute_step.side_effect = step
    q.enqueue(3)

    q.drain()

    assert not q.is_queued(3)


def test_resume_running_enqueues_running_scans(app, make_domain, make_scan):
    running = make_scan(make_domain("a.example.com"), status=SCAN_RUNNING, step=1)
    make_scan(make_domain("b.example.com"), status=SCAN_PENDING)
    make_scan(make_domain("c.example.com"), status=SCAN_COMPLETED, step=2)
    q = ScanQueue(mock.Mock())

    assert q.resume_running() == 1
    assert q.queued_ids() == [running.id]


def test_start_registers_interval_job(app):
    q = ScanQueue(mock.Mock(), interval_seconds=30)
    with mock.patch("testme.scanner.queue.BackgroundScheduler") as scheduler_cls:
        q.start(app)
        q.start(app)

    scheduler = scheduler_cls.return_value
    scheduler_cls.assert_called_once_with(daemon=True)
    kwargs = scheduler.add_job.call_args.kwargs
    assert kwargs["id"] == "scan_queue_drain"
    assert kwargs["max_instances"] == 1
    assert kwargs["replace_existing"] is True
    scheduler.start.assert_called_once()
    assert q.running

    q.shutdown()
    scheduler.shutdown.assert_called_once_with(wait=False)
    assert not q.running
