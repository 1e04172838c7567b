"""Staging models: raw rows decoded from the bulk export, keyed by Shopify GID."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from catalog_sync.models.sync import utcnow


class RawVariant(SQLModel, table=True):
    """
    One row per ProductVariant line in the bulk result.

    Every column is overwritten on each upsert; nothing accumulates, so
    replaying a result file leaves the table unchanged.
    """

    __tablename__ = "raw_variants"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: str = Field(unique=True, index=True)  # gid://shopify/ProductVariant/123
    shopify_id: Optional[int] = None  # numeric tail of external_id

    sku: str = ""
    display_name: str = ""
    size: str = ""  # variant title is usually the size
    price: float = 0.0
    quantity: int = 0
    available_for_sale: bool = False
    image_url: Optional[str] = None

    product_external_id: Optional[str] = None
    product_title: Optional[str] = None
    product_status: Optional[str] = None
    product_type: Optional[str] = None

    weight: Optional[float] = None
    weight_unit: Optional[str] = None

    # Fixed columns for the metafields the SKU transform reads
    order_entry_collection: Optional[str] = None
    order_entry_description: Optional[str] = None
    fabric: Optional[str] = None
    color: Optional[str] = None
    features: Optional[str] = None
    msrp: Optional[str] = None
    cad_ws_price: Optional[str] = None
    usd_ws_price: Optional[str] = None
    msrp_cad: Optional[str] = None
    msrp_us: Optional[str] = None

    # Every mf* alias seen on the line, as a JSON object
    metafields_json: Optional[str] = None

    first_seen_at: datetime = Field(default_factory=utcnow)


class RawInventoryLevel(SQLModel, table=True):
    """
    One row per InventoryLevel line; linked to its variant by parent_external_id.

    incoming / committed are overwritten from the line's quantities list.
    """

    __tablename__ = "raw_inventory_levels"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: str = Field(unique=True, index=True)
    parent_external_id: str = Field(index=True)
    incoming: int = 0
    committed: int = 0
    first_seen_at: datetime = Field(default_factory=utcnow)
