"""
SyncOrchestrator — runs one full Shopify → staging → SKU sync.

Flow for a full sync:
  1. Sweep runs stuck in "started" past the orphan threshold to "timeout"
  2. Ask the ConcurrencyGuard; bail out (no run recorded) if busy
  3. Resolve the bulk query and start the job; record SyncRun(started)
  4. Poll every poll_interval until COMPLETED, FAILED/CANCELED or max_wait
  5. Stream the result file through the ingestor (staging upserts)
  6. Rebuild skus via the TransformStage
  7. Mark the run "completed" with item_count = SKUs written

Each run moves from "started" to exactly one terminal status. Every failure
is written onto the run and returned as a SyncResult; nothing propagates to
the caller. Webhook deliveries enter at handle_job_completion() and join
the same path at step 5.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlmodel import Session, select

from catalog_sync.models.sync import (
    CANCELLED,
    COMPLETED,
    FAILED,
    ON_DEMAND,
    STARTED,
    TIMEOUT,
    SyncRun,
    utcnow,
)
from catalog_sync.shopify import client as job_status
from catalog_sync.shopify.errors import BulkJobUserError, SyncError, SyncTimeoutError
from catalog_sync.shopify.guard import sweep_orphaned_runs
from catalog_sync.shopify.query_generator import QueryConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    success: bool
    message: str
    operation_id: Optional[str] = None
    processed_count: Optional[int] = None
    error: Optional[str] = None
    run_id: Optional[int] = None
    status: Optional[str] = None
    skipped: bool = False  # refused by the concurrency guard; no run recorded

    def to_dict(self) -> Dict[str, Any]:
        """Response body for the HTTP trigger."""
        body: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.operation_id is not None:
            body["operationId"] = self.operation_id
        if self.processed_count is not None:
            body["processedCount"] = self.processed_count
        if self.error is not None:
            body["error"] = self.error
        return body


class SyncOrchestrator:
    """Composes client, guard, ingestor and transform into the run lifecycle."""

    def __init__(
        self,
        client,
        engine,
        guard,
        ingestor,
        transform,
        query_config: Optional[QueryConfig] = None,
        *,
        poll_interval: float = 3.0,
        max_wait: float = 600.0,
        orphan_minutes: int = 30,
        skip_backup: bool = False,
        sleep_fn: Callable = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            client: ShopifyClient (or AsyncMock in tests).
            engine: SQLAlchemy engine holding sync_runs and staging tables.
            guard: ConcurrencyGuard.
            ingestor: StreamIngestor feeding the Reconciler.
            transform: TransformStage.
            query_config: which bulk query to submit; baseline by default.
            sleep_fn / clock: injectable for tests.
        """
        self.client = client
        self.engine = engine
        self.guard = guard
        self.ingestor = ingestor
        self.transform = transform
        self.query_config = query_config or QueryConfig()
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.orphan_minutes = orphan_minutes
        self.skip_backup = skip_backup
        self.sleep_fn = sleep_fn
        self.clock = clock

    async def run_full_sync(
        self,
        sync_type: str = ON_DEMAND,
        max_wait_seconds: Optional[float] = None,
    ) -> SyncResult:
        """
        Run the whole lifecycle and wait for it to finish.

        Args:
            sync_type: "scheduled" or "on-demand", recorded on the run.
            max_wait_seconds: wall-clock bound on polling; defaults to max_wait.

        Returns:
            SyncResult describing the outcome. Never raises.
        """
        run: Optional[SyncRun] = None
        try:
            sweep_orphaned_runs(self.engine, self.orphan_minutes)

            guard = await self.guard.check_active()
            if guard.in_progress:
                logger.info("Sync skipped: %s", guard.reason)
                return SyncResult(
                    success=False,
                    message="Sync already in progress",
                    error=guard.reason,
                    run_id=guard.run_id,
                    skipped=True,
                )

            query_text = self.query_config.resolve()

            try:
                job = await self.client.start_job(query_text)
            except BulkJobUserError as exc:
                run = self._create_run(sync_type)
                return self._fail(run, FAILED, str(exc))

            run = self._create_run(sync_type, operation_id=job.id)
            logger.info("Sync run %s started (operation %s, %s)", run.id, job.id, sync_type)

            try:
                job = await self._wait_for_job(run, job.id, max_wait_seconds)
            except SyncTimeoutError as exc:
                return self._fail(run, TIMEOUT, str(exc))
            if job is None:
                return self._result_for(run)

            return await self._process_completed(run, job)

        except Exception as exc:
            logger.exception("Sync failed")
            if run is None:
                run = self._create_run(sync_type)
            return self._fail(run, FAILED, str(exc) or exc.__class__.__name__)

    async def handle_job_completion(
        self,
        operation_id: str,
        status: str,
        error_code: Optional[str] = None,
    ) -> SyncResult:
        """
        Continue a run after a bulk_operations/finish webhook.

        The webhook payload carries no result URL, so a COMPLETED status
        re-fetches the job before ingesting. Already-completed runs are
        acknowledged without reprocessing.
        """
        run = self._find_run(operation_id)
        if run is None:
            logger.warning("Webhook for unknown operation %s", operation_id)
            return SyncResult(
                success=False,
                message="No sync run found for operation",
                operation_id=operation_id,
            )
        if run.status == COMPLETED:
            return SyncResult(
                success=True,
                message="Already processed",
                operation_id=operation_id,
                processed_count=run.item_count,
                run_id=run.id,
                status=run.status,
            )
        if run.status != STARTED:
            return SyncResult(
                success=False,
                message=f"Sync run already {run.status}",
                operation_id=operation_id,
                error=run.error_message,
                run_id=run.id,
                status=run.status,
            )

        status = (status or "").upper()
        try:
            if status in (job_status.FAILED, job_status.CANCELED):
                return self._fail(run, *self._job_failure(status, error_code))
            if status != job_status.COMPLETED:
                return SyncResult(
                    success=False,
                    message=f"Ignoring bulk operation status {status}",
                    operation_id=operation_id,
                    run_id=run.id,
                    status=run.status,
                )
            job = await self.client.poll_status(operation_id)
            return await self._process_completed(run, job)
        except Exception as exc:
            logger.exception("Webhook processing failed for %s", operation_id)
            return self._fail(run, FAILED, str(exc) or exc.__class__.__name__)

    # ─── Lifecycle stages ─────────────────────────────────────────────────────

    async def _wait_for_job(self, run: SyncRun, operation_id: str, max_wait_seconds):
        """
        Poll until the job completes. Returns the completed job, or None
        after recording a terminal status on the run.

        Raises:
            SyncTimeoutError: the job was still active at the deadline.
        """
        limit = self.max_wait if max_wait_seconds is None else max_wait_seconds
        deadline = self.clock() + limit

        while True:
            try:
                job = await self.client.poll_status(operation_id)
            except SyncError as exc:
                self._finish_run(run.id, status=FAILED, error_message=f"Status poll failed: {exc}")
                return None

            if job.status == job_status.COMPLETED:
                logger.info("Bulk operation %s completed (%d objects)", operation_id, job.object_count)
                return job
            if job.status in (job_status.FAILED, job_status.CANCELED):
                status, message = self._job_failure(job.status, job.error_code)
                self._finish_run(run.id, status=status, error_message=message)
                return None

            if self.clock() >= deadline:
                raise SyncTimeoutError(f"Bulk operation still {job.status} after {limit:.0f}s")

            logger.debug("Bulk operation %s is %s; waiting", operation_id, job.status)
            await self.sleep_fn(self.poll_interval)

    async def _process_completed(self, run: SyncRun, job) -> SyncResult:
        """Download, ingest and transform a COMPLETED job, then close the run."""
        if not job.url:
            return self._fail(run, FAILED, "Bulk operation completed without a result URL")

        loop = asyncio.get_event_loop()
        ingest = await loop.run_in_executor(
            None,
            lambda: self.ingestor.ingest(
                self.client.iter_result(job.url), on_progress=self._checkpoint
            ),
        )
        logger.info(
            "Ingested %d records (%d errors, %d ignored) for operation %s",
            ingest.processed, ingest.errors, ingest.ignored, job.id,
        )

        result = await loop.run_in_executor(
            None, lambda: self.transform.transform(skip_backup=self.skip_backup)
        )

        self._finish_run(run.id, status=COMPLETED, item_count=result.processed)
        message = f"Sync completed: {ingest.processed} records ingested, {result.processed} SKUs written"
        if ingest.errors:
            message += f" ({ingest.errors} malformed lines skipped)"
        logger.info("Sync run %s: %s", run.id, message)
        return SyncResult(
            success=True,
            message=message,
            operation_id=job.id,
            processed_count=result.processed,
            run_id=run.id,
            status=COMPLETED,
        )

    @staticmethod
    def _checkpoint(processed: int) -> None:
        if processed % 1000 == 0:
            logger.info("Ingestion checkpoint: %d records", processed)

    @staticmethod
    def _job_failure(status: str, error_code: Optional[str]):
        terminal = CANCELLED if status == job_status.CANCELED else FAILED
        message = f"Bulk operation {status.lower()}"
        if error_code:
            message += f": {error_code}"
        return terminal, message

    # ─── Run records ──────────────────────────────────────────────────────────

    def _create_run(self, sync_type: str, operation_id: Optional[str] = None) -> SyncRun:
        run = SyncRun(sync_type=sync_type, status=STARTED, operation_id=operation_id, started_at=utcnow())
        with Session(self.engine) as s:
            s.add(run)
            s.commit()
            s.refresh(run)
        return run

    def _finish_run(
        self,
        run_id: int,
        *,
        status: str,
        item_count: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Move a started run to a terminal status. Returns False if it had already left started."""
        with Session(self.engine) as s:
            db_run = s.get(SyncRun, run_id)
            if db_run is None or db_run.status != STARTED:
                return False
            db_run.status = status
            db_run.completed_at = utcnow()
            db_run.item_count = item_count
            db_run.error_message = error_message
            s.add(db_run)
            s.commit()
        if status != COMPLETED:
            logger.warning("Sync run %s %s: %s", run_id, status, error_message)
        return True

    def _fail(self, run: SyncRun, status: str, message: str) -> SyncResult:
        self._finish_run(run.id, status=status, error_message=message)
        return self._result_for(run)

    def _result_for(self, run: SyncRun) -> SyncResult:
        with Session(self.engine) as s:
            db_run = s.get(SyncRun, run.id)
        return SyncResult(
            success=db_run.status == COMPLETED,
            message=db_run.error_message or f"Sync {db_run.status}",
            operation_id=db_run.operation_id,
            processed_count=db_run.item_count,
            error=db_run.error_message,
            run_id=db_run.id,
            status=db_run.status,
        )

    def _find_run(self, operation_id: str) -> Optional[SyncRun]:
        with Session(self.engine) as s:
            return s.exec(
                select(SyncRun)
                .where(SyncRun.operation_id == operation_id)
                .order_by(SyncRun.started_at.desc())
            ).first()


def get_latest_run(engine) -> Optional[SyncRun]:
    with Session(engine) as s:
        return s.exec(select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc())).first()


def build_orchestrator(engine=None, settings=None) -> SyncOrchestrator:
    """
    Wire a SyncOrchestrator from Settings.

    Raises:
        ConfigurationError: Shopify credentials are missing.
    """
    from catalog_sync.config import get_settings
    from catalog_sync.db.engine import get_engine
    from catalog_sync.shopify.client import ShopifyClient
    from catalog_sync.shopify.guard import ConcurrencyGuard
    from catalog_sync.shopify.ingest import StreamIngestor
    from catalog_sync.shopify.query_generator import load_field_mappings
    from catalog_sync.shopify.reconciler import Reconciler
    from catalog_sync.shopify.transform import TransformStage

    settings = settings or get_settings()
    engine = engine or get_engine()
    client = ShopifyClient.from_settings(settings)

    query_config = QueryConfig()
    if settings.sync_use_field_mappings:
        with Session(engine) as s:
            mappings = load_field_mappings(s)
        if mappings:
            query_config = QueryConfig(field_mappings=mappings)
        else:
            logger.warning("sync_use_field_mappings is set but no mappings exist; using baseline query")

    return SyncOrchestrator(
        client=client,
        engine=engine,
        guard=ConcurrencyGuard(engine, client, lease_minutes=settings.sync_lease_minutes),
        ingestor=StreamIngestor(Reconciler(engine)),
        transform=TransformStage(engine),
        query_config=query_config,
        poll_interval=settings.sync_poll_interval_seconds,
        max_wait=settings.sync_max_wait_seconds,
        orphan_minutes=settings.sync_orphan_minutes,
        skip_backup=settings.transform_skip_backup,
    )
