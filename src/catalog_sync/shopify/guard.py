"""
Best-effort mutual exclusion for sync runs.

Two tiers:
  1. Local lease: a SyncRun with status=started inside the lease window.
     Answers without touching Shopify.
  2. Remote: currentBulkOperation, which is authoritative for the shop
     (Shopify allows one bulk query at a time).

If the remote check itself fails we let the sync proceed; a missed run is
worse than a rare overlap, and Shopify will reject a second bulk query
anyway. The check-then-create race between two callers is accepted.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from catalog_sync.models.sync import STARTED, TIMEOUT, SyncRun, utcnow
from catalog_sync.shopify.client import ACTIVE_JOB_STATUSES
from catalog_sync.shopify.errors import SyncError

logger = logging.getLogger(__name__)

ORPHAN_MESSAGE = "Sync timed out - completion signal never received"


@dataclass(frozen=True)
class GuardResult:
    in_progress: bool
    reason: Optional[str] = None
    run_id: Optional[int] = None


class ConcurrencyGuard:
    def __init__(self, engine, client, lease_minutes: int = 15, now_fn: Callable = utcnow):
        self.engine = engine
        self.client = client
        self.lease_minutes = lease_minutes
        self.now_fn = now_fn

    def active_local_run(self) -> Optional[SyncRun]:
        """Most recent started run still inside the lease window."""
        cutoff = self.now_fn() - timedelta(minutes=self.lease_minutes)
        with Session(self.engine) as s:
            return s.exec(
                select(SyncRun)
                .where(SyncRun.status == STARTED)
                .where(SyncRun.started_at >= cutoff)
                .order_by(SyncRun.started_at.desc())
            ).first()

    async def check_active(self) -> GuardResult:
        run = self.active_local_run()
        if run is not None:
            return GuardResult(
                in_progress=True,
                reason=f"A sync is already in progress (started at {run.started_at.isoformat()})",
                run_id=run.id,
            )

        try:
            job = await self.client.current_job()
        except SyncError as exc:
            logger.warning("Could not check Shopify bulk operation status: %s", exc)
            return GuardResult(in_progress=False)

        if job is not None and job.status in ACTIVE_JOB_STATUSES:
            return GuardResult(
                in_progress=True,
                reason=f"Shopify bulk operation is {job.status.lower()}",
            )
        return GuardResult(in_progress=False)


def sweep_orphaned_runs(engine, orphan_minutes: int = 30, now=None) -> int:
    """
    Move runs stuck in `started` past the orphan threshold to `timeout`.

    Returns:
        Number of runs swept.
    """
    now = now or utcnow()
    cutoff = now - timedelta(minutes=orphan_minutes)
    with Session(engine) as s:
        result = s.connection().execute(
            update(SyncRun.__table__)
            .where(SyncRun.status == STARTED)
            .where(SyncRun.started_at < cutoff)
            .values(status=TIMEOUT, completed_at=now, error_message=ORPHAN_MESSAGE)
        )
        s.commit()
        count = result.rowcount or 0
    if count:
        logger.info("Cleaned up %d orphaned sync run(s)", count)
    return count
