"""
Pydantic schemas for the operational API.

- String inputs have explicit max_length.
- Request body models use extra="forbid" to reject unexpected fields.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, ConfigDict

MAX_LEN_TABLE = 64
MAX_LEN_ADMIN_KEY = 128


class ForceSyncBody(BaseModel):
    """Request body for an out-of-schedule sync."""
    model_config = ConfigDict(extra="forbid")
    tenant_id: int = Field(..., gt=0, le=2**31 - 1)


class QueueItemOut(BaseModel):
    tenant_id: int
    tenant_name: Optional[str] = None
    enqueued_at: datetime


class QueueStatus(BaseModel):
    queue_length: int
    in_flight: list[int]
    draining: bool
    queue: list[QueueItemOut]


class ForceSyncResponse(BaseModel):
    status: Literal["queued"] = "queued"
    item: QueueItemOut


class SyncLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    tenant_id: int
    tenant_name: Optional[str] = None
    table_name: str
    status: str
    total_rows: int = 0
    inserted_rows: int = 0
    updated_rows: int = 0
    deleted_rows: int = 0
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None


class SyncLogPage(BaseModel):
    logs: list[SyncLogOut]
    total: int
    limit: int
    offset: int


class TableLogStats(BaseModel):
    table_name: str
    total: int
    success: int
    failure: int
    last_run_at: Optional[datetime] = None


class SyncLogStats(BaseModel):
    total: int
    success: int
    failure: int
    tables: list[TableLogStats]


class TenantTableStats(BaseModel):
    tenant_id: int
    current_rows: int
    stale_rows: int
    last_loaded_at: Optional[datetime] = None


class TableStats(BaseModel):
    table_name: str
    entity: str
    tenants: list[TenantTableStats]


class TokenStatusOut(BaseModel):
    """Cached token view; the token itself is never returned."""
    model_config = ConfigDict(from_attributes=True)
    tenant_id: int
    active: bool
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    remaining_seconds: int = 0
