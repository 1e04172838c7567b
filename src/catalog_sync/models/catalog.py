"""Canonical catalog models: SKUs, categories and query field mappings."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from catalog_sync.models.sync import utcnow

DEFAULT_DISPLAY_PRIORITY = 10000


class SkuCategory(SQLModel, table=True):
    """Order-entry category. A name may exist twice: ATS and PreOrder."""

    __tablename__ = "sku_categories"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    is_preorder: bool = False


class Sku(SQLModel, table=True):
    """
    Business-facing SKU row, rebuilt from raw_variants on every transform.

    display_priority is set by staff and survives rebuilds; everything else
    is derived.
    """

    __tablename__ = "skus"

    id: Optional[int] = Field(default=None, primary_key=True)
    sku_id: str = Field(index=True)  # upper-cased SKU, the natural key
    category_id: int = Field(index=True)
    description: str = ""
    quantity: int = 0
    price: Optional[str] = None  # "CAD: x / USD: y"
    size: str = ""
    fabric_content: Optional[str] = None
    sku_color: str = ""
    on_route: int = 0  # pending supply: max(0, incoming - committed)
    price_cad: Optional[str] = None
    price_usd: Optional[str] = None
    msrp_cad: Optional[str] = None
    msrp_usd: Optional[str] = None
    show_in_preorder: bool = False
    order_entry_description: Optional[str] = None
    display_priority: int = DEFAULT_DISPLAY_PRIORITY
    shopify_variant_id: Optional[int] = None
    image_url: Optional[str] = None
    date_added: datetime = Field(default_factory=utcnow)
    date_modified: datetime = Field(default_factory=utcnow)


class FieldMappingRow(SQLModel, table=True):
    """Persisted field-mapping entry driving bulk query generation."""

    __tablename__ = "field_mappings"

    id: Optional[int] = Field(default=None, primary_key=True)
    service_name: str = Field(default="bulk_sync", index=True)
    field_path: str
    field_type: str  # scalar | object | connection | metafield
    sort_order: int = 0
    metafield_namespace: Optional[str] = None
    metafield_key: Optional[str] = None
    enabled: bool = True
