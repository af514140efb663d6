"""
Reconcile one tenant's mirrored table against a freshly fetched dataset.

Phase 1 flags every current row stale; phase 2 merges the fetched rows back in
batches, flipping ``current`` on for everything observed. Rows absent upstream
are left stale (soft delete), never removed.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.orm import Session

from erp_mirror.config import settings
from erp_mirror.database import utcnow

logger = logging.getLogger(__name__)

# Failures that only discard the offending row
ROW_ERRORS = (DataError, IntegrityError, ValueError, TypeError, KeyError)

UPSERT_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


@dataclass
class ReconcileCounts:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0


def _key(spec, values: dict[str, Any]) -> tuple:
    return tuple(values[c] for c in spec.key_columns)


def _existing_keys(db: Session, spec, tenant_id: int, keys: list[tuple]) -> set[tuple]:
    """Natural keys from ``keys`` that already have a row for this tenant (current or stale)."""
    if not keys:
        return set()
    model = spec.model
    columns = [getattr(model, c) for c in spec.key_columns]
    if len(columns) == 1:
        match = columns[0].in_([k[0] for k in keys])
    else:
        match = or_(*[and_(*[col == v for col, v in zip(columns, k)]) for k in keys])
    found = db.query(*columns).filter(model.tenant_id == tenant_id, match).all()
    return {tuple(r) for r in found}


def _merge(db: Session, spec, values: dict[str, Any]) -> None:
    """Insert the row or update it in place when (tenant_id, natural key) exists."""
    model = spec.model
    insert_fn = UPSERT_INSERTS.get(db.get_bind().dialect.name)
    if insert_fn is None:
        db.merge(model(**values))
        return
    index = ["tenant_id", *spec.key_columns]
    stmt = insert_fn(model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=index,
        set_={c: stmt.excluded[c] for c in values if c not in index},
    )
    db.execute(stmt)


def reconcile(
    db: Session,
    tenant_id: int,
    spec,
    rows: list[dict[str, Any]],
    batch_size: Optional[int] = None,
    clock: Callable[[], datetime] = utcnow,
) -> ReconcileCounts:
    """
    Make the tenant's rows for ``spec`` match ``rows``.

    Commits once per batch. Row-level conversion or constraint failures skip the
    row; anything else rolls back the open batch and propagates.
    """
    batch_size = batch_size or settings.reconcile_batch_size
    model = spec.model
    now = clock()
    counts = ReconcileCounts()

    try:
        result = db.execute(
            update(model)
            .where(model.tenant_id == tenant_id, model.current.is_(True))
            .values(current=False, loaded_at=now)
        )
        counts.deleted = result.rowcount or 0
        logger.info("%s: flagged %d rows stale for contract %s", spec.name, counts.deleted, tenant_id)

        seen: set[tuple] = set()
        for start in range(0, len(rows), batch_size):
            batch = []
            for raw in rows[start:start + batch_size]:
                try:
                    values = spec.map_row(raw)
                except (ValueError, TypeError, KeyError) as e:
                    counts.skipped += 1
                    logger.warning("%s: skipping unconvertible row for contract %s: %s", spec.name, tenant_id, e)
                    continue
                values.update(tenant_id=tenant_id, current=True, loaded_at=now)
                batch.append(values)

            existing = _existing_keys(db, spec, tenant_id, [_key(spec, v) for v in batch])
            for values in batch:
                key = _key(spec, values)
                try:
                    with db.begin_nested():
                        _merge(db, spec, values)
                except ROW_ERRORS as e:
                    counts.skipped += 1
                    logger.warning("%s: skipping row %s for contract %s: %s", spec.name, key, tenant_id, e)
                    continue
                if key in existing or key in seen:
                    counts.updated += 1
                else:
                    counts.inserted += 1
                seen.add(key)

            db.commit()
            logger.info(
                "%s: committed batch %d-%d for contract %s (inserted=%d updated=%d skipped=%d)",
                spec.name, start, min(start + batch_size, len(rows)), tenant_id, counts.inserted, counts.updated, counts.skipped,
            )

        db.commit()
    except Exception:
        db.rollback()
        raise

    return counts
