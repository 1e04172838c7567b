"""
Idempotent upserts of decoded bulk records into staging tables.

Find-by-external-id, then update in place or insert. Every column is
assigned from the record on each call, so replaying a result file any
number of times yields the same rows. external_id is unique; if a
concurrent writer inserts the same key between our find and our insert,
the IntegrityError is caught and the write is retried as an update.
"""
import json
import logging
from typing import Any, Dict, Type

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, select

from catalog_sync.models.staging import RawInventoryLevel, RawVariant
from catalog_sync.shopify.records import METAFIELD_COLUMNS, ChildRecord, PrimaryRecord, parse_gid

logger = logging.getLogger(__name__)

INCOMING = "incoming"
COMMITTED = "committed"


class Reconciler:
    """Writes PrimaryRecord / ChildRecord values into raw_variants / raw_inventory_levels."""

    def __init__(self, engine):
        self.engine = engine

    def upsert_primary(self, record: PrimaryRecord) -> RawVariant:
        fields: Dict[str, Any] = {
            "shopify_id": parse_gid(record.external_id),
            "sku": record.sku,
            "display_name": record.display_name,
            "size": record.size,
            "price": record.price,
            "quantity": record.quantity,
            "available_for_sale": record.quantity > 0,
            "image_url": record.image_url,
            "product_external_id": record.product_external_id,
            "product_title": record.product_title,
            "product_status": record.product_status,
            "product_type": record.product_type,
            "weight": record.weight,
            "weight_unit": record.weight_unit,
            "metafields_json": json.dumps(record.metafields, sort_keys=True) if record.metafields else None,
        }
        for alias, column in METAFIELD_COLUMNS.items():
            fields[column] = record.metafields.get(alias)
        return self._upsert(RawVariant, record.external_id, fields)

    def upsert_child(self, record: ChildRecord) -> RawInventoryLevel:
        # Named sub-values collapse onto fixed columns; missing names read as 0
        fields: Dict[str, Any] = {
            "parent_external_id": record.parent_external_id,
            "incoming": record.quantities.get(INCOMING, 0),
            "committed": record.quantities.get(COMMITTED, 0),
        }
        return self._upsert(RawInventoryLevel, record.external_id, fields)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _upsert(self, model: Type[SQLModel], external_id: str, fields: Dict[str, Any]):
        try:
            return self._write(model, external_id, fields)
        except IntegrityError:
            logger.info("Concurrent insert for %s %s; retrying as update", model.__name__, external_id)
            return self._write(model, external_id, fields)

    def _write(self, model: Type[SQLModel], external_id: str, fields: Dict[str, Any]):
        with Session(self.engine) as s:
            row = s.exec(select(model).where(model.external_id == external_id)).first()
            if row is None:
                row = model(external_id=external_id)
            for k, v in fields.items():
                setattr(row, k, v)
            s.add(row)
            s.commit()
            s.refresh(row)
            return row
