"""Sync log store: append attempts, filtered listing, aggregate stats."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, case
from sqlalchemy.orm import Session, Query

from erp_mirror.models import SyncLog
from erp_mirror.models.sync_log import STATUS_SUCCESS, STATUS_FAILURE

logger = logging.getLogger(__name__)


@dataclass
class LogFilter:
    tenant_id: Optional[int] = None
    table_name: Optional[str] = None
    status: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None


def append_sync_log(db: Session, result) -> SyncLog:
    """Persist one TableSyncResult. Commits on its own; the log must survive a rolled-back sync."""
    log = SyncLog(
        tenant_id=result.tenant_id,
        tenant_name=result.tenant_name,
        table_name=result.table_name,
        status=STATUS_SUCCESS if result.success else STATUS_FAILURE,
        total_rows=result.total,
        inserted_rows=result.inserted,
        updated_rows=result.updated,
        deleted_rows=result.deleted,
        duration_ms=result.duration_ms,
        error_message=result.error,
        started_at=result.started_at,
        finished_at=result.finished_at,
    )
    db.add(log)
    db.commit()
    return log


def _filtered(db: Session, f: LogFilter) -> Query:
    q = db.query(SyncLog)
    if f.tenant_id is not None:
        q = q.filter(SyncLog.tenant_id == f.tenant_id)
    if f.table_name:
        q = q.filter(SyncLog.table_name == f.table_name)
    if f.status:
        q = q.filter(SyncLog.status == f.status.upper())
    if f.since:
        q = q.filter(SyncLog.started_at >= f.since)
    if f.until:
        q = q.filter(SyncLog.started_at <= f.until)
    return q


def query_sync_logs(db: Session, f: LogFilter, limit: int = 50, offset: int = 0) -> tuple[list[SyncLog], int]:
    """Newest first, with the unpaginated total."""
    q = _filtered(db, f)
    total = q.count()
    logs = q.order_by(SyncLog.started_at.desc(), SyncLog.id.desc()).offset(offset).limit(limit).all()
    return logs, total


def iter_sync_logs(db: Session, f: LogFilter, chunk_size: int = 500):
    """All matching logs, newest first, loaded in chunks (CSV export)."""
    q = _filtered(db, f).order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
    return q.yield_per(chunk_size)


def sync_log_stats(db: Session, f: LogFilter) -> dict:
    """Totals and per-table success/failure counts for the filtered logs."""
    success = func.sum(case((SyncLog.status == STATUS_SUCCESS, 1), else_=0))
    failure = func.sum(case((SyncLog.status == STATUS_FAILURE, 1), else_=0))

    q = _filtered(db, f)
    per_table = (
        q.with_entities(
            SyncLog.table_name,
            func.count(SyncLog.id),
            success,
            failure,
            func.max(SyncLog.started_at),
        )
        .group_by(SyncLog.table_name)
        .order_by(SyncLog.table_name)
        .all()
    )
    tables = [
        {
            "table_name": name,
            "total": int(total or 0),
            "success": int(ok or 0),
            "failure": int(failed or 0),
            "last_run_at": last_run,
        }
        for name, total, ok, failed, last_run in per_table
    ]
    return {
        "total": sum(t["total"] for t in tables),
        "success": sum(t["success"] for t in tables),
        "failure": sum(t["failure"] for t in tables),
        "tables": tables,
    }
