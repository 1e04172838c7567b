"""
TransformStage — rebuilds the canonical `skus` table from staging rows.

Flow:
  1. Optional backup: CREATE TABLE skus_backup_<ts> AS SELECT * FROM skus.
     A failed backup is logged and the transform carries on.
  2. Capture display_priority per SKU (the only staff-maintained column).
  3. Build candidate rows from eligible raw_variants, fanning each
     comma-separated collection out to one row per matched category.
  4. Inside one transaction: delete every SKU, insert the candidates with
     sticky values reapplied, commit. Readers see the old table or the new
     one, never a partial one.

Duplicate (sku_id, category_id) pairs keep the first candidate in staging
order, so a collection string that repeats a category yields one row.
"""
import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import delete, text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from catalog_sync.models.catalog import DEFAULT_DISPLAY_PRIORITY, Sku, SkuCategory
from catalog_sync.models.staging import RawInventoryLevel, RawVariant
from catalog_sync.models.sync import utcnow

logger = logging.getLogger(__name__)

KEY_DELIMITER = "-"
EXCLUDED_KEYWORDS = ("group", "defective")
PREORDER_RE = re.compile(r"pre-?order", re.IGNORECASE)
_COLOR_JUNK_RE = re.compile(r'[\[\]"]')

REQUIRED_PRICING = ("cad_ws_price", "usd_ws_price", "msrp_cad", "msrp_us")


@dataclass(frozen=True)
class TransformResult:
    processed: int
    skipped: int
    backup_table: Optional[str] = None
    duplicates_removed: int = 0


def is_eligible(row: RawVariant) -> bool:
    """SKU has a dash, collection is usable, and all four price metafields are set."""
    if KEY_DELIMITER not in (row.sku or ""):
        return False
    collection = (row.order_entry_collection or "").strip()
    if not collection:
        return False
    lowered = collection.lower()
    if any(word in lowered for word in EXCLUDED_KEYWORDS):
        return False
    return all((getattr(row, name) or "").strip() for name in REQUIRED_PRICING)


def split_collection(collection: str) -> List[Tuple[str, bool]]:
    """
    "Swim, Resort Pre-Order" -> [("Swim", False), ("Resort", True)]

    Each comma-separated token is checked for the pre-order marker, which is
    stripped to leave the bare category name.
    """
    tokens = []
    for raw in collection.split(","):
        token = raw.strip()
        if not token:
            continue
        is_preorder = bool(PREORDER_RE.search(token))
        name = " ".join(PREORDER_RE.sub(" ", token).split())
        tokens.append((name, is_preorder))
    return tokens


def pending_supply(incoming: int, committed: int) -> int:
    return max(0, (incoming or 0) - (committed or 0))


def clean_color(value: Optional[str]) -> str:
    """Colour metafields arrive as JSON list text: '["Navy"]' -> 'Navy'"""
    return _COLOR_JUNK_RE.sub("", value or "")


class TransformStage:
    """Derives Sku rows from RawVariant / RawInventoryLevel staging data."""

    def __init__(self, engine, now_fn: Callable = utcnow):
        self.engine = engine
        self.now_fn = now_fn

    def transform(self, skip_backup: bool = False) -> TransformResult:
        """
        Rebuild the skus table.

        Args:
            skip_backup: don't snapshot the current table first.

        Returns:
            TransformResult with rows inserted, tokens skipped (no matching
            category) and the backup table name, if one was made.

        Raises:
            SQLAlchemyError: the rebuild failed and was rolled back.
        """
        backup_table = None if skip_backup else self.backup()

        with Session(self.engine) as s:
            categories = {
                (c.name.strip().lower(), bool(c.is_preorder)): c.id
                for c in s.exec(select(SkuCategory)).all()
            }
            supply = self._supply_by_variant(s)

            sticky: Dict[str, int] = {}
            for sku_id, priority in s.exec(select(Sku.sku_id, Sku.display_priority)).all():
                if priority is not None:
                    sticky.setdefault(sku_id, priority)

            now = self.now_fn()
            seen = set()
            rows: List[Sku] = []
            skipped = duplicates = 0

            variants = s.exec(select(RawVariant).order_by(RawVariant.id)).all()
            for variant in variants:
                if not is_eligible(variant):
                    continue
                sku_id = variant.sku.strip().upper()
                for name, is_preorder in split_collection(variant.order_entry_collection):
                    category_id = categories.get((name.lower(), is_preorder))
                    if category_id is None:
                        skipped += 1
                        logger.debug("No category for %r (preorder=%s) on %s", name, is_preorder, sku_id)
                        continue
                    if (sku_id, category_id) in seen:
                        duplicates += 1
                        continue
                    seen.add((sku_id, category_id))
                    rows.append(
                        self._build_row(
                            variant, sku_id, category_id, is_preorder,
                            supply.get(variant.external_id, 0),
                            sticky.get(sku_id, DEFAULT_DISPLAY_PRIORITY),
                            now,
                        )
                    )

            try:
                s.connection().execute(delete(Sku.__table__))
                s.add_all(rows)
                s.commit()
            except SQLAlchemyError:
                s.rollback()
                logger.exception("SKU rebuild failed; previous table left in place")
                raise

        logger.info(
            "Transform complete: %d SKUs from %d staged variants (%d skipped, %d duplicates)",
            len(rows), len(variants), skipped, duplicates,
        )
        return TransformResult(
            processed=len(rows),
            skipped=skipped,
            backup_table=backup_table,
            duplicates_removed=duplicates,
        )

    def backup(self) -> Optional[str]:
        """Copy skus to a timestamped table. Returns its name, or None on failure."""
        name = f"skus_backup_{self.now_fn().strftime('%Y%m%d_%H%M%S')}"
        try:
            with self.engine.begin() as conn:
                conn.execute(text(f"CREATE TABLE {name} AS SELECT * FROM skus"))
        except SQLAlchemyError as exc:
            logger.warning("SKU backup failed, continuing without one: %s", exc)
            return None
        logger.info("Backed up skus to %s", name)
        return name

    # ─── Internal helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _supply_by_variant(s: Session) -> Dict[str, int]:
        totals: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
        for level in s.exec(select(RawInventoryLevel)).all():
            totals[level.parent_external_id][0] += level.incoming or 0
            totals[level.parent_external_id][1] += level.committed or 0
        return {parent: pending_supply(inc, com) for parent, (inc, com) in totals.items()}

    @staticmethod
    def _build_row(
        variant: RawVariant,
        sku_id: str,
        category_id: int,
        is_preorder: bool,
        on_route: int,
        display_priority: int,
        now,
    ) -> Sku:
        return Sku(
            sku_id=sku_id,
            category_id=category_id,
            description=variant.display_name or "",
            quantity=variant.quantity or 0,
            price=f"CAD: {variant.cad_ws_price} / USD: {variant.usd_ws_price}",
            size=variant.size or "",
            fabric_content=variant.fabric,
            sku_color=clean_color(variant.color),
            on_route=on_route,
            price_cad=variant.cad_ws_price,
            price_usd=variant.usd_ws_price,
            msrp_cad=variant.msrp_cad,
            msrp_usd=variant.msrp_us,
            show_in_preorder=is_preorder,
            order_entry_description=variant.order_entry_description,
            display_priority=display_priority,
            shopify_variant_id=variant.shopify_id,
            image_url=variant.image_url,
            date_added=now,
            date_modified=now,
        )
