"""Tests for DB models."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from catalog_sync.models.catalog import DEFAULT_DISPLAY_PRIORITY, Sku
from catalog_sync.models.staging import RawVariant
from catalog_sync.models.sync import COMPLETED, ON_DEMAND, STARTED, TERMINAL_STATUSES, SyncRun, utcnow


class TestSyncRun:
    def test_defaults(self):
        run = SyncRun()
        assert run.status == STARTED
        assert run.sync_type == ON_DEMAND
        assert run.completed_at is None
        assert run.started_at.tzinfo is None

    def test_started_is_not_terminal(self):
        assert STARTED not in TERMINAL_STATUSES
        assert TERMINAL_STATUSES == {"completed", "failed", "timeout", "cancelled"}

    def test_duration_ms(self):
        run = SyncRun(
            started_at=datetime(2026, 3, 2, 12, 0, 0),
            completed_at=datetime(2026, 3, 2, 12, 1, 30),
        )
        assert run.duration_ms == pytest.approx(90_000.0)

    def test_duration_none_while_running(self):
        assert SyncRun(started_at=datetime(2026, 3, 2, 12, 0)).duration_ms is None

    def test_persists_and_retrieves(self, test_session: Session):
        test_session.add(SyncRun(operation_id="gid://shopify/BulkOperation/1"))
        test_session.commit()
        run = test_session.exec(select(SyncRun)).one()
        assert run.id is not None
        assert run.operation_id == "gid://shopify/BulkOperation/1"

    def test_timestamps_round_trip(self, test_session: Session):
        started = utcnow()
        completed = started + timedelta(seconds=42)
        test_session.add(SyncRun(status=COMPLETED, started_at=started, completed_at=completed))
        test_session.commit()
        test_session.expire_all()

        run = test_session.exec(select(SyncRun)).one()
        assert run.started_at == started
        assert run.completed_at == completed
        assert run.duration_ms == pytest.approx(42_000.0)
        assert run.started_at < utcnow() + timedelta(seconds=1)


class TestRawVariant:
    def test_external_id_unique(self, test_session: Session):
        test_session.add(RawVariant(external_id="gid://shopify/ProductVariant/1"))
        test_session.commit()
        test_session.add(RawVariant(external_id="gid://shopify/ProductVariant/1"))
        with pytest.raises(IntegrityError):
            test_session.commit()


class TestSku:
    def test_display_priority_default(self):
        assert Sku(sku_id="ABC-1", category_id=1).display_priority == DEFAULT_DISPLAY_PRIORITY == 10000

    def test_on_route_defaults_to_zero(self):
        assert Sku(sku_id="ABC-1", category_id=1).on_route == 0
