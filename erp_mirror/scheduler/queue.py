"""
Sync scheduler: periodic due-contract polling feeding a single sequential worker.

Queue and in-flight set are only touched under ``self._lock``; a contract id is
never in both at once and never twice in either. One worker drains the queue,
so exactly one contract is being synced at any time.
"""
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from erp_mirror.config import settings
from erp_mirror.contracts import contracts_due, get_contract, mark_synced
from erp_mirror.database import SessionLocal, utcnow
from erp_mirror.exceptions import AlreadyInFlightError, AlreadyQueuedError
from erp_mirror.pipeline.catalog import CATALOG
from erp_mirror.pipeline.fetch import PageFetcher
from erp_mirror.pipeline.sync import TableSyncPipeline

logger = logging.getLogger(__name__)

POLL_JOB_ID = "sync-poll"


@dataclass
class QueueItem:
    tenant_id: int
    tenant_name: Optional[str]
    enqueued_at: datetime


class SyncScheduler:
    def __init__(
        self,
        pipeline,
        catalog=None,
        session_factory: Callable = SessionLocal,
        max_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        poll_seconds: Optional[int] = None,
        spawn_worker: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            pipeline: TableSyncPipeline (or anything with ``sync_table``)
            catalog: tables synced per contract, in order (default: full catalog)
            spawn_worker: start a worker thread when work arrives; when False the
                caller drives ``drain()`` itself
        """
        self.pipeline = pipeline
        self.catalog = list(CATALOG if catalog is None else catalog)
        self.session_factory = session_factory
        self.max_attempts = max_attempts or settings.table_max_attempts
        self.retry_backoff = settings.table_retry_backoff_seconds if retry_backoff is None else retry_backoff
        self.poll_seconds = poll_seconds or settings.scheduler_poll_seconds
        self.spawn_worker = spawn_worker
        self._sleep = sleep
        self._clock = clock

        self._lock = threading.Lock()
        self._queue: deque[QueueItem] = deque()
        self._in_flight: set[int] = set()
        self._draining = False
        self._worker: Optional[threading.Thread] = None
        self._timer: Optional[BackgroundScheduler] = None

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Start the periodic poll (first run immediately)."""
        if self._timer is not None:
            return
        self._timer = BackgroundScheduler(job_defaults={"coalesce": True, "max_instances": 1})
        self._timer.add_job(
            self.poll,
            IntervalTrigger(seconds=self.poll_seconds),
            id=POLL_JOB_ID,
            name="Poll due contracts",
            next_run_time=datetime.now(),
            replace_existing=True,
        )
        self._timer.start()
        logger.info("Sync scheduler started (poll every %ds)", self.poll_seconds)

    def stop(self) -> None:
        """Stop polling. A pass already running finishes on its own."""
        if self._timer is None:
            return
        self._timer.shutdown(wait=False)
        self._timer = None
        logger.info("Sync scheduler stopped")

    # -- enqueueing ----------------------------------------------------------

    def poll(self) -> int:
        """Enqueue every due contract not already queued or in flight. Returns how many were added."""
        db = self.session_factory()
        try:
            due = [(c.id, c.name) for c in contracts_due(db, self._clock())]
        finally:
            db.close()

        added = 0
        with self._lock:
            queued = {item.tenant_id for item in self._queue}
            for tenant_id, name in due:
                if tenant_id in queued or tenant_id in self._in_flight:
                    logger.debug("Contract %s already scheduled, skipping", tenant_id)
                    continue
                self._queue.append(QueueItem(tenant_id, name, self._clock()))
                queued.add(tenant_id)
                added += 1
            pending = len(self._queue)

        logger.info("Poll: %d due, %d enqueued, %d pending", len(due), added, pending)
        if pending:
            self._ensure_draining()
        return added

    def force_sync(self, tenant_id: int) -> QueueItem:
        """
        Enqueue a contract outside its schedule.

        Raises ContractNotFoundError for unknown ids and AlreadyQueuedError /
        AlreadyInFlightError when the contract is already scheduled.
        """
        db = self.session_factory()
        try:
            name = get_contract(db, tenant_id).name
        finally:
            db.close()

        with self._lock:
            if tenant_id in self._in_flight:
                raise AlreadyInFlightError(tenant_id)
            if any(item.tenant_id == tenant_id for item in self._queue):
                raise AlreadyQueuedError(tenant_id)
            item = QueueItem(tenant_id, name, self._clock())
            self._queue.append(item)

        logger.info("Contract %s force-queued", tenant_id)
        self._ensure_draining()
        return item

    def status(self) -> dict:
        with self._lock:
            return {
                "queue_length": len(self._queue),
                "in_flight": sorted(self._in_flight),
                "draining": self._draining,
                "queue": [
                    {"tenant_id": i.tenant_id, "tenant_name": i.tenant_name, "enqueued_at": i.enqueued_at}
                    for i in self._queue
                ],
            }

    # -- draining ------------------------------------------------------------

    def _ensure_draining(self) -> None:
        with self._lock:
            if self._draining:
                return
            self._draining = True
        if not self.spawn_worker:
            return
        self._worker = threading.Thread(target=self.drain, name="sync-worker", daemon=True)
        self._worker.start()

    def drain(self) -> int:
        """Process queued contracts FIFO until the queue is empty. Returns the number processed."""
        processed = 0
        while True:
            with self._lock:
                if not self._queue:
                    self._draining = False
                    break
                item = self._queue.popleft()
                self._in_flight.add(item.tenant_id)
                self._draining = True
            try:
                self._run_contract(item)
            except Exception:
                logger.exception("Pass for contract %s aborted", item.tenant_id)
            finally:
                with self._lock:
                    self._in_flight.discard(item.tenant_id)
            processed += 1
        logger.info("Queue drained (%d contracts)", processed)
        return processed

    def _run_contract(self, item: QueueItem) -> None:
        logger.info("Starting pass for contract %s (%s)", item.tenant_id, item.tenant_name)
        succeeded = 0
        for spec in self.catalog:
            result = self._sync_with_retry(item, spec)
            if result.success:
                succeeded += 1

        db = self.session_factory()
        try:
            mark_synced(db, item.tenant_id, self._clock())
        finally:
            db.close()
        logger.info(
            "Finished pass for contract %s: %d/%d tables synced",
            item.tenant_id, succeeded, len(self.catalog),
        )

    def _sync_with_retry(self, item: QueueItem, spec):
        for attempt in range(1, self.max_attempts + 1):
            result = self.pipeline.sync_table(item.tenant_id, item.tenant_name, spec)
            if result.success:
                return result
            if not result.retryable:
                logger.error(
                    "Contract %s %s failed with a configuration error, not retrying: %s",
                    item.tenant_id, spec.name, result.error,
                )
                return result
            if attempt < self.max_attempts:
                delay = self.retry_backoff * attempt
                logger.warning(
                    "Contract %s %s attempt %d/%d failed, retrying in %.1fs",
                    item.tenant_id, spec.name, attempt, self.max_attempts, delay,
                )
                self._sleep(delay)
        logger.error(
            "Contract %s %s failed after %d attempts: %s",
            item.tenant_id, spec.name, self.max_attempts, result.error,
        )
        return result


def build_scheduler(token_manager, client, spawn_worker: bool = True) -> SyncScheduler:
    """Wire fetcher, pipeline and scheduler around a shared token manager and ERP client."""
    fetcher = PageFetcher(client, token_manager)
    pipeline = TableSyncPipeline(token_manager, fetcher)
    return SyncScheduler(pipeline, spawn_worker=spawn_worker)
