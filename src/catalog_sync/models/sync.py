"""Sync run audit model."""
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

# Status values
STARTED = "started"
COMPLETED = "completed"
FAILED = "failed"
TIMEOUT = "timeout"
CANCELLED = "cancelled"

TERMINAL_STATUSES = frozenset({COMPLETED, FAILED, TIMEOUT, CANCELLED})

# Sync types
SCHEDULED = "scheduled"
ON_DEMAND = "on-demand"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how SQLite hands datetimes back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SyncRun(SQLModel, table=True):
    """
    One row per sync attempt.

    Created with status="started" and moved to exactly one terminal status.
    Rows are never deleted; they feed the concurrency lease and the health
    monitor.
    """

    __tablename__ = "sync_runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    sync_type: str = Field(default=ON_DEMAND)  # "scheduled" | "on-demand"
    status: str = Field(default=STARTED, index=True)
    operation_id: Optional[str] = Field(default=None, index=True)
    started_at: datetime = Field(default_factory=utcnow, index=True)
    completed_at: Optional[datetime] = None
    item_count: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000.0
