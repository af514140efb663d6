"""API routes for the sync queue, sync logs, mirrored table stats and tenant tokens."""
import csv
import io
import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from erp_mirror.api.auth import require_admin_key
from erp_mirror.contracts import get_contract, table_stats
from erp_mirror.database import get_db
from erp_mirror.exceptions import ContractNotFoundError, QueueConflictError
from erp_mirror.pipeline.catalog import get_table
from erp_mirror.schemas import (
    ForceSyncBody,
    ForceSyncResponse,
    QueueItemOut,
    QueueStatus,
    SyncLogOut,
    SyncLogPage,
    SyncLogStats,
    TableStats,
    TenantTableStats,
    TokenStatusOut,
    MAX_LEN_TABLE,
)
from erp_mirror.sync_logs import LogFilter, iter_sync_logs, query_sync_logs, sync_log_stats

router = APIRouter(dependencies=[Depends(require_admin_key)])
logger = logging.getLogger(__name__)

TenantIdPath = Path(..., gt=0, le=2**31 - 1, description="Contract ID (positive integer)")


def get_scheduler(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(503, "Scheduler not running")
    return scheduler


def get_token_manager(request: Request):
    manager = getattr(request.app.state, "token_manager", None)
    if manager is None:
        raise HTTPException(503, "Token manager not available")
    return manager


def get_log_filter(
    tenant_id: Optional[int] = Query(None, gt=0, le=2**31 - 1),
    table: Optional[str] = Query(None, min_length=1, max_length=MAX_LEN_TABLE),
    status: Optional[str] = Query(None, description="SUCCESS or FAILURE"),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
) -> LogFilter:
    """Dependency: shared filters for log listing, stats and export."""
    if status is not None and status.upper() not in ("SUCCESS", "FAILURE"):
        raise HTTPException(400, "status must be one of: SUCCESS, FAILURE")
    return LogFilter(tenant_id=tenant_id, table_name=table, status=status, since=since, until=until)


# -- queue -------------------------------------------------------------------

@router.get("/sync/queue", response_model=QueueStatus)
def queue_status(scheduler=Depends(get_scheduler)):
    """Queue length, contracts in flight and queued contracts in FIFO order."""
    return scheduler.status()


@router.post("/sync/queue/force", response_model=ForceSyncResponse, status_code=202)
def force_sync(body: ForceSyncBody, scheduler=Depends(get_scheduler)):
    """Queue a contract outside its schedule."""
    try:
        item = scheduler.force_sync(body.tenant_id)
    except ContractNotFoundError:
        raise HTTPException(404, "Contract not found")
    except QueueConflictError as e:
        raise HTTPException(409, e.message)
    return ForceSyncResponse(
        item=QueueItemOut(tenant_id=item.tenant_id, tenant_name=item.tenant_name, enqueued_at=item.enqueued_at)
    )


# -- sync logs ---------------------------------------------------------------

@router.get("/sync/logs", response_model=SyncLogPage)
def list_sync_logs(
    filters: LogFilter = Depends(get_log_filter),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    """Sync attempts, newest first."""
    logs, total = query_sync_logs(db, filters, limit=limit, offset=offset)
    return SyncLogPage(
        logs=[SyncLogOut.model_validate(log) for log in logs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/sync/logs/stats", response_model=SyncLogStats)
def sync_logs_stats(filters: LogFilter = Depends(get_log_filter), db: Session = Depends(get_db)):
    """Success/failure totals, overall and per table."""
    return sync_log_stats(db, filters)


@router.get("/sync/logs/export")
def export_sync_logs(filters: LogFilter = Depends(get_log_filter), db: Session = Depends(get_db)):
    """Export sync logs as a CSV file."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "Started", "Finished", "Contract", "Contract Name", "Table", "Status",
        "Total", "Inserted", "Updated", "Stale", "Duration ms", "Error",
    ])
    for log in iter_sync_logs(db, filters):
        writer.writerow([
            log.started_at.isoformat() if log.started_at else "",
            log.finished_at.isoformat() if log.finished_at else "",
            log.tenant_id,
            log.tenant_name or "",
            log.table_name,
            log.status,
            log.total_rows or 0,
            log.inserted_rows or 0,
            log.updated_rows or 0,
            log.deleted_rows or 0,
            log.duration_ms if log.duration_ms is not None else "",
            log.error_message or "",
        ])

    output.seek(0)
    filename = f"sync_logs_{date.today().isoformat()}.csv"
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


# -- mirrored tables ---------------------------------------------------------

@router.get("/sync/tables/{table_name}/stats", response_model=TableStats)
def mirrored_table_stats(
    table_name: str = Path(..., min_length=1, max_length=MAX_LEN_TABLE),
    db: Session = Depends(get_db),
):
    """Current/stale row counts and last load per contract for one catalog table."""
    spec = get_table(table_name)
    if spec is None:
        raise HTTPException(404, "Unknown table")
    return TableStats(
        table_name=spec.name,
        entity=spec.entity,
        tenants=[TenantTableStats(**row) for row in table_stats(db, spec.model)],
    )


# -- tokens ------------------------------------------------------------------

@router.get("/tokens/{tenant_id}", response_model=TokenStatusOut)
def token_status(
    tenant_id: int = TenantIdPath,
    db: Session = Depends(get_db),
    manager=Depends(get_token_manager),
):
    """Cached token state for a contract (never the token itself)."""
    try:
        get_contract(db, tenant_id)
    except ContractNotFoundError:
        raise HTTPException(404, "Contract not found")
    return TokenStatusOut.model_validate(manager.status(tenant_id))


@router.delete("/tokens/{tenant_id}", status_code=204)
def invalidate_token(
    tenant_id: int = TenantIdPath,
    db: Session = Depends(get_db),
    manager=Depends(get_token_manager),
):
    """Drop the cached token; the next request re-authenticates."""
    try:
        get_contract(db, tenant_id)
    except ContractNotFoundError:
        raise HTTPException(404, "Contract not found")
    manager.invalidate(tenant_id)
    logger.info("Token for contract %s invalidated via API", tenant_id)
