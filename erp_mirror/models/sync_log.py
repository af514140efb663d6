"""SyncLog model — append-only history of table sync attempts."""
from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from sqlalchemy.sql import func

from erp_mirror.database import Base

STATUS_SUCCESS = "SUCCESS"
STATUS_FAILURE = "FAILURE"


class SyncLog(Base):
    """One row per (tenant, table) pipeline attempt, successful or not."""

    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)  # no FK: logs outlive contracts
    tenant_name = Column(String(255))
    table_name = Column(String(64), nullable=False)
    status = Column(String(10), nullable=False)  # SUCCESS | FAILURE

    total_rows = Column(Integer, default=0)
    inserted_rows = Column(Integer, default=0)
    updated_rows = Column(Integer, default=0)
    deleted_rows = Column(Integer, default=0)
    duration_ms = Column(Integer)
    error_message = Column(Text)

    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        Index("ix_sync_logs_tenant_table", "tenant_id", "table_name"),
        Index("ix_sync_logs_status", "status"),
    )

    def __repr__(self):
        return f"<SyncLog(id={self.id}, tenant_id={self.tenant_id}, table='{self.table_name}', status='{self.status}')>"
