"""
Bulk result line decoder.

Each NDJSON line is decoded into exactly one tagged variant:

  PrimaryRecord   id contains "ProductVariant". Flat variant fields plus a
                  nested product / inventoryItem object.
  ChildRecord     id contains "InventoryLevel" and the line carries a parent
                  reference (__parentId, or parentRef) to its variant, plus a
                  quantities list of {name, quantity} pairs.
  Unrecognized    anything else (products, images, selectedOptions rows).

No DB access here; the reconciler handles persistence. decode_line() raises
ParseError for text that isn't a JSON object, or whose nested fields have
the wrong type (e.g. "product": "oops").
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from catalog_sync.shopify.errors import ParseError

PRIMARY_MARKER = "ProductVariant"
CHILD_MARKER = "InventoryLevel"

# Metafield alias -> RawVariant column
METAFIELD_COLUMNS: Dict[str, str] = {
    "mfOrderEntryCollection": "order_entry_collection",
    "mfOrderEntryDescription": "order_entry_description",
    "mfFabric": "fabric",
    "mfColor": "color",
    "mfFeatures": "features",
    "mfMSRP": "msrp",
    "mfCADWSPrice": "cad_ws_price",
    "mfUSDWSPrice": "usd_ws_price",
    "mfMSRPCAD": "msrp_cad",
    "mfMSRPUSD": "msrp_us",
}

_GID_NUMERIC_RE = re.compile(r"/(\d+)$")
_GID_TYPE_RE = re.compile(r"^[a-z]+://(?:[^/]+/)?(\w+)/\d+")


def parse_gid(gid: Optional[str]) -> Optional[int]:
    """gid://shopify/ProductVariant/12345 -> 12345"""
    if not gid:
        return None
    match = _GID_NUMERIC_RE.search(gid)
    return int(match.group(1)) if match else None


def gid_resource_type(gid: Optional[str]) -> Optional[str]:
    """gid://shopify/ProductVariant/12345 -> ProductVariant"""
    if not gid:
        return None
    match = _GID_TYPE_RE.match(gid)
    return match.group(1) if match else None


@dataclass(frozen=True)
class PrimaryRecord:
    external_id: str
    sku: str = ""
    display_name: str = ""
    size: str = ""
    price: float = 0.0
    quantity: int = 0
    image_url: Optional[str] = None
    product_external_id: Optional[str] = None
    product_title: Optional[str] = None
    product_status: Optional[str] = None
    product_type: Optional[str] = None
    weight: Optional[float] = None
    weight_unit: Optional[str] = None
    metafields: Dict[str, Optional[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class ChildRecord:
    external_id: str
    parent_external_id: str
    quantities: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Unrecognized:
    raw_id: Optional[str] = None


Record = Union[PrimaryRecord, ChildRecord, Unrecognized]


def decode_line(line: str) -> Record:
    """Decode one NDJSON line. Raises ParseError for malformed text."""
    try:
        item = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Invalid JSON: {exc.msg} at column {exc.colno}") from exc
    if not isinstance(item, dict):
        raise ParseError(f"Expected a JSON object, got {type(item).__name__}")
    try:
        return decode_item(item)
    except (AttributeError, TypeError, OverflowError) as exc:
        # valid JSON, but a nested field has the wrong shape
        raise ParseError(f"Unexpected field shape: {exc}") from exc


def decode_item(item: Dict[str, Any]) -> Record:
    """Classify an already-parsed line by its id marker."""
    item_id = item.get("id")
    if not isinstance(item_id, str):
        return Unrecognized()

    if PRIMARY_MARKER in item_id:
        return _decode_variant(item_id, item)

    parent = item.get("__parentId") or item.get("parentRef")
    if CHILD_MARKER in item_id and isinstance(parent, str) and parent:
        return _decode_inventory_level(item_id, parent, item)

    return Unrecognized(raw_id=item_id)


def _decode_variant(item_id: str, item: Dict[str, Any]) -> PrimaryRecord:
    product = item.get("product") or {}
    inventory_item = item.get("inventoryItem") or {}
    weight = ((inventory_item.get("measurement") or {}).get("weight")) or {}

    variant_image = (item.get("image") or {}).get("url")
    product_image = (
        ((product.get("featuredMedia") or {}).get("preview") or {}).get("image") or {}
    ).get("url")

    metafields: Dict[str, Optional[str]] = {}
    for key, value in product.items():
        if key.startswith("mf"):
            metafields[key] = value.get("value") if isinstance(value, dict) else None

    return PrimaryRecord(
        external_id=item_id,
        sku=item.get("sku") or "",
        display_name=item.get("displayName") or product.get("title") or "",
        size=item.get("title") or "",
        price=_to_float(item.get("price"), 0.0),
        quantity=_to_int(item.get("inventoryQuantity")),
        image_url=variant_image or product_image,
        product_external_id=product.get("id"),
        product_title=product.get("title"),
        product_status=product.get("status"),
        product_type=product.get("productType"),
        weight=_to_float(weight.get("value"), None),
        weight_unit=weight.get("unit"),
        metafields=metafields,
    )


def _decode_inventory_level(item_id: str, parent: str, item: Dict[str, Any]) -> ChildRecord:
    quantities: Dict[str, int] = {}
    for entry in item.get("quantities") or []:
        if isinstance(entry, dict) and entry.get("name"):
            # Shopify sends {name, quantity}; {name, value} is accepted too
            raw = entry.get("quantity", entry.get("value"))
            quantities[entry["name"]] = _to_int(raw)
    return ChildRecord(external_id=item_id, parent_external_id=parent, quantities=quantities)


def _to_float(value: Any, default: Optional[float]) -> Optional[float]:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
