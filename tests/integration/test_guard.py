"""Integration tests for ConcurrencyGuard and the orphan sweep."""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import requests
from sqlmodel import Session, select

from catalog_sync.models.sync import COMPLETED, STARTED, TIMEOUT, SyncRun
from catalog_sync.shopify.client import BulkJob, ShopifyClient
from catalog_sync.shopify.errors import RemoteTransientError
from catalog_sync.shopify.guard import ConcurrencyGuard, sweep_orphaned_runs
from catalog_sync.shopify.retry import RetryPolicy

NOW = datetime(2026, 3, 2, 12, 0)


def _add_run(engine, *, minutes_ago, status=STARTED) -> int:
    with Session(engine) as s:
        run = SyncRun(status=status, started_at=NOW - timedelta(minutes=minutes_ago))
        s.add(run)
        s.commit()
        s.refresh(run)
        return run.id


def _guard(engine, current=None, error=None):
    client = AsyncMock()
    client.current_job = AsyncMock(return_value=current, side_effect=error)
    return ConcurrencyGuard(engine, client, lease_minutes=15, now_fn=lambda: NOW), client


class TestCheckActive:
    @pytest.mark.asyncio
    async def test_fresh_local_run_blocks_without_remote_call(self, engine):
        run_id = _add_run(engine, minutes_ago=0)
        guard, client = _guard(engine)
        result = await guard.check_active()
        assert result.in_progress is True
        assert result.run_id == run_id
        assert "already in progress" in result.reason
        client.current_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_running_blocks(self, engine):
        guard, client = _guard(engine, current=BulkJob(id="b1", status="RUNNING"))
        result = await guard.check_active()
        assert result.in_progress is True
        assert result.reason == "Shopify bulk operation is running"
        client.current_job.assert_awaited_once()

    @pytest.mark.parametrize("status", ["CREATED", "CANCELING"])
    @pytest.mark.asyncio
    async def test_other_active_remote_statuses_block(self, engine, status):
        guard, _ = _guard(engine, current=BulkJob(id="b1", status=status))
        assert (await guard.check_active()).in_progress is True

    @pytest.mark.asyncio
    async def test_idle_everywhere_allows(self, engine):
        guard, _ = _guard(engine, current=BulkJob(id="b1", status="COMPLETED"))
        result = await guard.check_active()
        assert result.in_progress is False

    @pytest.mark.asyncio
    async def test_no_remote_history_allows(self, engine):
        guard, _ = _guard(engine, current=None)
        assert (await guard.check_active()).in_progress is False

    @pytest.mark.asyncio
    async def test_stale_local_run_falls_through_to_remote(self, engine):
        _add_run(engine, minutes_ago=20)
        guard, client = _guard(engine, current=None)
        assert (await guard.check_active()).in_progress is False
        client.current_job.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_completed_local_run_ignored(self, engine):
        _add_run(engine, minutes_ago=1, status=COMPLETED)
        guard, _ = _guard(engine, current=None)
        assert (await guard.check_active()).in_progress is False

    @pytest.mark.asyncio
    async def test_remote_error_does_not_block(self, engine):
        guard, _ = _guard(engine, error=RemoteTransientError("503", status_code=503))
        result = await guard.check_active()
        assert result.in_progress is False

    @pytest.mark.parametrize("failure", [
        requests.TooManyRedirects("Exceeded 30 redirects."),
        requests.exceptions.InvalidURL("No host supplied"),
    ])
    @pytest.mark.asyncio
    async def test_transport_failure_on_real_client_does_not_block(self, engine, failure):
        session = MagicMock()
        session.post.side_effect = failure
        client = ShopifyClient(
            "shop.myshopify.com",
            "shpat_test",
            retry=RetryPolicy(max_attempts=2, sleep=lambda _: None, jitter=lambda: 0.0),
            session=session,
        )
        guard = ConcurrencyGuard(engine, client, lease_minutes=15, now_fn=lambda: NOW)
        result = await guard.check_active()
        assert result.in_progress is False
        session.post.assert_called_once()

    @pytest.mark.asyncio
    async def test_list_body_on_real_client_does_not_block(self, engine):
        response = MagicMock(status_code=200)
        response.json.return_value = ["unexpected"]
        session = MagicMock()
        session.post.return_value = response
        client = ShopifyClient("shop.myshopify.com", "shpat_test", session=session)
        guard = ConcurrencyGuard(engine, client, lease_minutes=15, now_fn=lambda: NOW)
        assert (await guard.check_active()).in_progress is False


class TestSweepOrphanedRuns:
    def test_old_started_run_times_out(self, engine):
        run_id = _add_run(engine, minutes_ago=31)
        assert sweep_orphaned_runs(engine, orphan_minutes=30, now=NOW) == 1
        with Session(engine) as s:
            run = s.get(SyncRun, run_id)
        assert run.status == TIMEOUT
        assert run.completed_at == NOW
        assert run.error_message

    def test_recent_started_run_untouched(self, engine):
        run_id = _add_run(engine, minutes_ago=10)
        assert sweep_orphaned_runs(engine, orphan_minutes=30, now=NOW) == 0
        with Session(engine) as s:
            run = s.get(SyncRun, run_id)
        assert run.status == STARTED
        assert run.completed_at is None
        assert run.error_message is None

    def test_terminal_runs_untouched(self, engine):
        _add_run(engine, minutes_ago=120, status=COMPLETED)
        assert sweep_orphaned_runs(engine, orphan_minutes=30, now=NOW) == 0
        with Session(engine) as s:
            statuses = [r.status for r in s.exec(select(SyncRun)).all()]
        assert statuses == [COMPLETED]
