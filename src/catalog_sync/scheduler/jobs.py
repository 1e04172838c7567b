"""
APScheduler jobs for background sync.

A full catalog sync runs every sync_schedule_hours hours (on the hour),
and an hourly health check logs an alert when the run history looks bad.
Manual triggers through the API share the same concurrency guard, so a
scheduled run that collides with one simply skips.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from catalog_sync.config import get_settings
from catalog_sync.models.sync import SCHEDULED

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine passed to the sync and health jobs.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _scheduled_sync,
        trigger="cron",
        hour=f"*/{settings.sync_schedule_hours}",
        minute=0,
        id="scheduled_sync",
        replace_existing=True,
        kwargs={"engine": engine},
    )
    scheduler.add_job(
        _health_check,
        trigger="cron",
        minute=30,
        id="health_check",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _scheduled_sync(engine) -> None:
    """Scheduled job: one full sync. Never raises, so the scheduler stays alive."""
    from catalog_sync.shopify.sync_service import build_orchestrator

    try:
        orchestrator = build_orchestrator(engine=engine)
        result = await orchestrator.run_full_sync(sync_type=SCHEDULED)
        if result.success:
            logger.info("Scheduled sync finished: %s", result.message)
        else:
            logger.warning("Scheduled sync did not complete: %s", result.error or result.message)
    except Exception as exc:
        logger.error("Scheduled sync failed: %s", exc)


async def _health_check(engine) -> None:
    """Hourly job: log an alert if the sync history is unhealthy."""
    from catalog_sync.health.monitor import HealthMonitor

    settings = get_settings()
    try:
        monitor = HealthMonitor(
            engine,
            success_rate_threshold=settings.health_success_rate_threshold,
            consecutive_failure_threshold=settings.health_consecutive_failure_threshold,
            window_hours=settings.health_window_hours,
        )
        alert = monitor.check_and_alert()
        if not alert.should_alert:
            logger.info("Sync health OK")
    except Exception as exc:
        logger.error("Health check failed: %s", exc)
