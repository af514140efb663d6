"""Sync one mirrored table for one contract: token, fetch, reconcile, log."""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from erp_mirror.contracts import get_contract
from erp_mirror.database import SessionLocal, utcnow
from erp_mirror.exceptions import ConfigurationError
from erp_mirror.pipeline.reconcile import reconcile
from erp_mirror.sync_logs import append_sync_log

logger = logging.getLogger(__name__)

MAX_ERROR_LEN = 2000


class SyncStage(str, Enum):
    START = "START"
    TOKEN_ACQUIRED = "TOKEN_ACQUIRED"
    FETCHED = "FETCHED"
    RECONCILED = "RECONCILED"
    FAILED = "FAILED"
    LOGGED = "LOGGED"


@dataclass
class TableSyncResult:
    success: bool
    tenant_id: int
    tenant_name: Optional[str]
    table_name: str
    started_at: datetime
    total: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    finished_at: Optional[datetime] = None
    duration_ms: int = 0
    error: Optional[str] = None
    stage: SyncStage = SyncStage.START
    failed_stage: Optional[SyncStage] = None  # last stage reached before the failure
    retryable: bool = True  # false for configuration errors


class TableSyncPipeline:
    """
    Runs one (contract, table) attempt end to end.

    Always uses a freshly issued token so the credentials match the contract
    being synced. Never raises for fetch/reconcile failures: they come back as
    an unsuccessful result, and every attempt is written to the sync log.
    """

    def __init__(
        self,
        token_manager,
        fetcher,
        session_factory: Callable = SessionLocal,
        clock: Callable[[], datetime] = utcnow,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.token_manager = token_manager
        self.fetcher = fetcher
        self.session_factory = session_factory
        self._clock = clock
        self._timer = timer

    def sync_table(self, tenant_id: int, tenant_name: Optional[str], spec) -> TableSyncResult:
        result = TableSyncResult(
            success=False,
            tenant_id=tenant_id,
            tenant_name=tenant_name,
            table_name=spec.name,
            started_at=self._clock(),
        )
        t0 = self._timer()
        logger.info("[%s] %s: START", tenant_id, spec.name)

        db = None
        try:
            db = self.session_factory()
            contract = get_contract(db, tenant_id)
            if result.tenant_name is None:
                result.tenant_name = contract.name
            is_sandbox = bool(contract.is_sandbox)
            db.rollback()  # release the read transaction before network calls

            token = self.token_manager.acquire(tenant_id, force_refresh=True)
            self._advance(result, SyncStage.TOKEN_ACQUIRED)

            rows = self.fetcher.fetch_all(tenant_id, spec, token, is_sandbox)
            result.total = len(rows)
            self._advance(result, SyncStage.FETCHED)

            counts = reconcile(db, tenant_id, spec, rows)
            result.inserted = counts.inserted
            result.updated = counts.updated
            result.deleted = counts.deleted
            result.skipped = counts.skipped
            self._advance(result, SyncStage.RECONCILED)
            result.success = True
        except Exception as e:
            self._rollback(db)
            result.retryable = not isinstance(e, ConfigurationError)
            result.failed_stage = result.stage
            result.stage = SyncStage.FAILED
            result.error = str(e)[:MAX_ERROR_LEN]
            logger.error("[%s] %s: FAILED after %s: %s", tenant_id, spec.name, result.failed_stage.value, e)
        finally:
            result.finished_at = self._clock()
            result.duration_ms = int((self._timer() - t0) * 1000)
            if db is not None:
                self._write_log(db, result)
                self._close(db)

        if result.success:
            logger.info(
                "[%s] %s: done in %dms (total=%d inserted=%d updated=%d stale=%d skipped=%d)",
                tenant_id, spec.name, result.duration_ms, result.total,
                result.inserted, result.updated, result.deleted, result.skipped,
            )
        return result

    def _advance(self, result: TableSyncResult, stage: SyncStage) -> None:
        result.stage = stage
        logger.info("[%s] %s: %s", result.tenant_id, result.table_name, stage.value)

    def _write_log(self, db, result: TableSyncResult) -> None:
        try:
            append_sync_log(db, result)
        except Exception:
            # A failed log write does not change the sync outcome
            self._rollback(db)
            logger.exception("[%s] %s: could not write sync log", result.tenant_id, result.table_name)
            return
        result.stage = SyncStage.LOGGED

    def _rollback(self, db) -> None:
        if db is None:
            return
        try:
            db.rollback()
        except Exception:
            logger.exception("Rollback failed")

    def _close(self, db) -> None:
        try:
            db.close()
        except Exception:
            logger.exception("Session close failed")
