"""Shared test fixtures."""
import json
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from catalog_sync.models.catalog import FieldMappingRow, Sku, SkuCategory  # noqa: F401
from catalog_sync.models.staging import RawInventoryLevel, RawVariant  # noqa: F401
from catalog_sync.models.sync import SyncRun  # noqa: F401

PRICING = {
    "mfCADWSPrice": "40.00",
    "mfUSDWSPrice": "30.00",
    "mfMSRPCAD": "90.00",
    "mfMSRPUSD": "70.00",
}


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="categories")
def categories_fixture(test_session: Session) -> dict:
    """Swim and Resort, each as an ATS and a PreOrder category. Keyed by (name, is_preorder)."""
    rows = {}
    for name in ("Swim", "Resort"):
        for is_preorder in (False, True):
            cat = SkuCategory(name=name, is_preorder=is_preorder)
            test_session.add(cat)
            rows[(name, is_preorder)] = cat
    test_session.commit()
    return {key: cat.id for key, cat in rows.items()}


def _metafield(value):
    return None if value is None else {"value": value}


@pytest.fixture(name="variant_line")
def variant_line_fixture():
    """Factory for one ProductVariant NDJSON line as Shopify emits it."""

    def make(
        gid="gid://shopify/ProductVariant/1001",
        sku="ABC-123",
        collection="Swim",
        quantity=12,
        pricing=None,
        **extra_metafields,
    ) -> str:
        metafields = dict(PRICING if pricing is None else pricing)
        metafields["mfOrderEntryCollection"] = collection
        metafields.update(extra_metafields)
        product = {
            "id": "gid://shopify/Product/77",
            "title": "Riviera One Piece",
            "status": "ACTIVE",
            "productType": "Swimwear",
        }
        product.update({alias: _metafield(value) for alias, value in metafields.items()})
        return json.dumps({
            "id": gid,
            "sku": sku,
            "price": "79.00",
            "inventoryQuantity": quantity,
            "displayName": "Riviera One Piece - 8",
            "title": "8",
            "image": {"url": "https://cdn.shopify.com/v.jpg"},
            "product": product,
            "inventoryItem": {
                "id": "gid://shopify/InventoryItem/5",
                "measurement": {"weight": {"unit": "GRAMS", "value": 210}},
            },
        }, ensure_ascii=False)

    return make


@pytest.fixture(name="level_line")
def level_line_fixture():
    """Factory for one InventoryLevel NDJSON line linked to a variant."""

    def make(
        gid="gid://shopify/InventoryLevel/9001?inventory_item_id=5",
        parent="gid://shopify/ProductVariant/1001",
        incoming=5,
        committed=2,
    ) -> str:
        return json.dumps({
            "id": gid,
            "quantities": [
                {"name": "incoming", "quantity": incoming},
                {"name": "committed", "quantity": committed},
            ],
            "__parentId": parent,
        })

    return make
