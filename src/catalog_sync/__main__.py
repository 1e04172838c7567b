"""
Main entrypoint.

FastAPI runs separately under uvicorn (for the trigger and webhook endpoints).

Usage:
    python -m catalog_sync                  # starts the scheduler
    python -m catalog_sync sync             # one full sync, then exit
    python -m catalog_sync validate-query   # diff generated vs baseline query
    python -m catalog_sync seed-mappings    # store the default field mappings
    python -m catalog_sync health           # print run-history stats
    uvicorn catalog_sync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import argparse
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _run_scheduler() -> None:
    from catalog_sync.config import get_settings
    from catalog_sync.db.engine import get_engine
    from catalog_sync.scheduler.jobs import build_scheduler

    settings = get_settings()
    settings.require_shopify()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info("Scheduler started (full sync every %d hours)", settings.sync_schedule_hours)

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()


async def _run_sync(max_wait: float = None) -> int:
    from catalog_sync.shopify.sync_service import build_orchestrator

    orchestrator = build_orchestrator()
    result = await orchestrator.run_full_sync(max_wait_seconds=max_wait)
    print(result.message)
    if result.error and result.error != result.message:
        print(f"Error: {result.error}")
    return 0 if result.success else 1


def _validate_query(from_db: bool) -> int:
    from sqlmodel import Session

    from catalog_sync.db.engine import get_engine
    from catalog_sync.shopify import query_generator as qg

    mappings = qg.DEFAULT_FIELD_MAPPINGS
    if from_db:
        with Session(get_engine()) as s:
            mappings = qg.load_field_mappings(s)
        if not mappings:
            print("No field mappings stored; run `python -m catalog_sync seed-mappings` first.")
            return 1

    for issue in qg.check_mappings(mappings):
        print(f"Warning: {issue}")

    generated = qg.generate(mappings)
    result = qg.validate(generated)
    if result.match:
        print("Generated query matches baseline.")
        return 0
    print("Generated query differs from baseline:")
    for line in result.differences:
        print(line)
    return 1


def _seed_mappings() -> int:
    from sqlmodel import Session

    from catalog_sync.db.engine import get_engine
    from catalog_sync.shopify.query_generator import seed_field_mappings

    with Session(get_engine()) as s:
        created, updated = seed_field_mappings(s)
    print(f"Field mappings seeded: {created} created, {updated} updated")
    return 0


def _print_health() -> int:
    from catalog_sync.config import get_settings
    from catalog_sync.db.engine import get_engine
    from catalog_sync.health.monitor import HealthMonitor

    settings = get_settings()
    monitor = HealthMonitor(
        get_engine(),
        success_rate_threshold=settings.health_success_rate_threshold,
        consecutive_failure_threshold=settings.health_consecutive_failure_threshold,
        window_hours=settings.health_window_hours,
    )
    stats = monitor.get_stats()
    print(f"Runs in last {stats.window_hours}h: {stats.total_runs} "
          f"({stats.completed} completed, {stats.failed} failed, {stats.in_progress} in progress)")
    print(f"Success rate: {stats.success_rate:.0%}")
    if stats.avg_duration_ms is not None:
        print(f"Average duration: {stats.avg_duration_ms / 1000:.1f}s")
    for warning in stats.warnings:
        print(f"Warning: {warning}")
    alert = monitor.check_and_alert()
    return 1 if alert.should_alert else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="catalog_sync")
    sub = parser.add_subparsers(dest="command")

    sync_p = sub.add_parser("sync", help="Run one full sync and exit")
    sync_p.add_argument("--max-wait", type=float, default=None, help="Seconds to wait for the bulk job")

    validate_p = sub.add_parser("validate-query", help="Compare the generated query to the baseline")
    validate_p.add_argument("--from-db", action="store_true", help="Use stored field mappings")

    sub.add_parser("seed-mappings", help="Store the default field mappings")
    sub.add_parser("health", help="Print sync health stats")

    args = parser.parse_args(argv)

    from catalog_sync.shopify.errors import ConfigurationError

    try:
        if args.command == "sync":
            return asyncio.run(_run_sync(args.max_wait))
        if args.command == "validate-query":
            return _validate_query(args.from_db)
        if args.command == "seed-mappings":
            return _seed_mappings()
        if args.command == "health":
            return _print_health()
        asyncio.run(_run_scheduler())
        return 0
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
