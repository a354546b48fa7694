"""Sync coordination models: locks, checkpoints, per-entity status, job log."""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC timestamp; datetime columns are declared as plain DateTime and store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SyncLock(SQLModel, table=True):
    """Leased named lock. Ownership is holder_id match, not row existence."""

    __tablename__ = "sync_lock"

    name: str = Field(primary_key=True)
    holder_id: str
    acquired_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    expires_at: datetime = Field(index=True, sa_type=DateTime)


class SyncCheckpoint(SQLModel, table=True):
    """Resume cursor, one row per job type. Deleted when a run completes."""

    __tablename__ = "sync_checkpoint"

    job_type: str = Field(primary_key=True)
    last_key: str
    processed_count: int = 0
    total_count: int = 0
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class SyncStatus(SQLModel, table=True):
    """Last outcome and retry schedule for one (entity, data type) pair."""

    __tablename__ = "sync_status"
    __table_args__ = (UniqueConstraint("entity_id", "data_type", name="uq_sync_status_entity_type"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: str = Field(index=True)
    data_type: str = Field(index=True)
    last_synced_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    last_status: str = "pending"  # "success", "failed"
    error_message: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class SyncJobLog(SQLModel, table=True):
    """Records each job run for audit and debugging."""

    __tablename__ = "sync_job_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    job_type: str = Field(index=True)
    status: str = "started"  # "started", "completed", "failed"
    processed_count: int = 0
    failed_count: int = 0
    started_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    error_message: Optional[str] = None
