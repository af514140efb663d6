"""Contract queries: lookup, due-for-sync selection, schedule bookkeeping, mirror table stats."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, case
from sqlalchemy.orm import Session

from erp_mirror.config import settings
from erp_mirror.database import SessionLocal, utcnow
from erp_mirror.exceptions import ContractNotFoundError
from erp_mirror.models import Contract

logger = logging.getLogger(__name__)


def get_contract(db: Session, tenant_id: int) -> Contract:
    c = db.query(Contract).filter(Contract.id == tenant_id).first()
    if not c:
        raise ContractNotFoundError(tenant_id)
    return c


def load_contract(tenant_id: int) -> Contract:
    """Load a contract in a short-lived session and detach it (used off the request path)."""
    db = SessionLocal()
    try:
        c = get_contract(db, tenant_id)
        db.expunge(c)
        return c
    finally:
        db.close()


def contracts_due(db: Session, now: Optional[datetime] = None) -> list[Contract]:
    """Active, sync-enabled contracts whose next run is unset or already past. Never-run first."""
    now = now or utcnow()
    return (
        db.query(Contract)
        .filter(
            Contract.sync_enabled.is_(True),
            Contract.active.is_(True),
            (Contract.next_sync_at.is_(None)) | (Contract.next_sync_at <= now),
        )
        .order_by(Contract.next_sync_at.is_(None).desc(), Contract.next_sync_at, Contract.id)
        .all()
    )


def mark_synced(db: Session, tenant_id: int, now: Optional[datetime] = None) -> Contract:
    """Record a finished pass and schedule the next one."""
    now = now or utcnow()
    c = get_contract(db, tenant_id)
    interval = c.sync_interval_minutes or settings.default_sync_interval_minutes
    c.last_sync_at = now
    c.next_sync_at = now + timedelta(minutes=interval)
    db.commit()
    logger.info("Contract %s next sync at %s", tenant_id, c.next_sync_at.isoformat())
    return c


def table_stats(db: Session, model) -> list[dict]:
    """Per-tenant row counts (current / stale) and last load instant for one mirrored table."""
    rows = (
        db.query(
            model.tenant_id,
            func.sum(case((model.current.is_(True), 1), else_=0)),
            func.sum(case((model.current.is_(False), 1), else_=0)),
            func.max(model.loaded_at),
        )
        .group_by(model.tenant_id)
        .order_by(model.tenant_id)
        .all()
    )
    return [
        {
            "tenant_id": tenant_id,
            "current_rows": int(current or 0),
            "stale_rows": int(stale or 0),
            "last_loaded_at": last_loaded,
        }
        for tenant_id, current, stale, last_loaded in rows
    ]
