# testme/scanner/queue.py
"""
Background scan queue
─────────────────────
Holds one work item per scan id. An APScheduler interval job drains the queue:
every tick runs at most one step per queued scan, so a scan is never stepped
twice concurrently. Items stay queued until the scan reports completed.

Cancelling a scan sets the item's cancellation token and drops the item; the
terminal state itself is written by the orchestrator, so a step that is
already running loses its cursor race and discards its findings.

Setup in the app factory:
    queue = ScanQueue(StepExecutor.from_config(app.config))
    queue.start(app)
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from testme.errors import NotFoundError
from testme.extensions import db
from testme.models import SCAN_RUNNING, Scan
from testme.scanner.executor import StepExecutor

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 5


@dataclass
class WorkItem:
    scan_id: int
    cancel_token: threading.Event = field(default_factory=threading.Event)
    enqueued_at: float = field(default_factory=time.time)
    steps_run: int = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.is_set()


class ScanQueue:

    def __init__(self, executor: Optional[StepExecutor] = None, interval_seconds: float = DEFAULT_INTERVAL_SECONDS):
        self.executor = executor or StepExecutor()
        self.interval_seconds = interval_seconds
        self._items: Dict[int, WorkItem] = {}
        self._in_flight: Set[int] = set()
        self._lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None

    # ---- Work items ----

    def enqueue(self, scan_id: int) -> WorkItem:
        with self._lock:
            item = self._items.get(scan_id)
            if item is None or item.cancelled:
                item = WorkItem(scan_id=scan_id)
                self._items[scan_id] = item
                logger.debug(f"Scan {scan_id} queued")
            return item

    def cancel(self, scan_id: int) -> bool:
        with self._lock:
            item = self._items.pop(scan_id, None)
        if item is None:
            return False
        item.cancel_token.set()
        logger.info(f"Scan {scan_id} removed from queue (cancelled)")
        return True

    def is_queued(self, scan_id: int) -> bool:
        with self._lock:
            return scan_id in self._items

    def queued_ids(self) -> List[int]:
        with self._lock:
            return sorted(self._items)

    def _drop(self, item: WorkItem) -> None:
        with self._lock:
            if self._items.get(item.scan_id) is item:
                del self._items[item.scan_id]

    # ---- Draining ----

    def drain(self) -> int:
        """
        Run one step for every queued scan that is not already in flight.
        Must be called inside an application context. Returns the number of
        steps executed.
        """
        with self._lock:
            ready = [item for sid, item in self._items.items() if sid not in self._in_flight]
            self._in_flight.update(item.scan_id for item in ready)

        ran = 0
        for item in ready:
            try:
                if self._run_item(item):
                    ran += 1
            except Exception as e:
                # one broken scan must not block the others; it is retried next tick
                logger.error(f"Queue: step for scan {item.scan_id} raised: {e}")
                db.session.rollback()
            finally:
                with self._lock:
                    self._in_flight.discard(item.scan_id)
        return ran

    def _run_item(self, item: WorkItem) -> bool:
        if item.cancelled:
            self._drop(item)
            return False

        try:
            result = self.executor.execute_step(item.scan_id)
        except NotFoundError:
            logger.info(f"Queue: scan {item.scan_id} no longer exists, dropping")
            self._drop(item)
            return False

        item.steps_run += 1
        if result.completed or item.cancelled:
            logger.info(
                f"Queue: scan {item.scan_id} finished with status '{result.status}' "
                f"after {item.steps_run} queued step(s) in {round(time.time() - item.enqueued_at)}s"
            )
            self._drop(item)
        return True

    def process(self, app) -> int:
        with app.app_context():
            return self.drain()

    # ---- Scheduler lifecycle ----

    def resume_running(self) -> int:
        """Re-enqueue scans persisted as running (restart resumption)."""
        try:
            ids = [sid for (sid,) in db.session.query(Scan.id).filter(Scan.status == SCAN_RUNNING).all()]
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Queue: could not load running scans: {e}")
            return 0
        for sid in ids:
            self.enqueue(sid)
        if ids:
            logger.info(f"Queue: resumed {len(ids)} running scan(s)")
        return len(ids)

    def start(self, app) -> None:
        if self._scheduler is not None:
            logger.info("Scan queue already running")
            return

        with app.app_context():
            self.resume_running()

        self._scheduler = BackgroundScheduler(daemon=True)
        self._scheduler.add_job(
            func=lambda: self.process(app),
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id="scan_queue_drain",
            name="Drain scan work items",
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.start()
        logger.info(f"Scan queue started (draining every {self.interval_seconds}s)")

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def shutdown(self) -> None:
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scan queue stopped")
