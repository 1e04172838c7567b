"""
Additive schema migrations.

create_all() never alters existing tables, so columns introduced after a
database was first created are added here. Each step is idempotent: the
column is only added if absent.

Called automatically from get_engine() after create_all().
"""
from sqlalchemy import inspect, text

# (table, column, SQL type) added since the first release
_ADDED_COLUMNS = (
    ("raw_variants", "features", "TEXT"),
    ("raw_variants", "msrp", "TEXT"),
    ("raw_variants", "product_type", "TEXT"),
    ("raw_variants", "metafields_json", "TEXT"),
    ("raw_variants", "weight", "FLOAT"),
    ("raw_variants", "weight_unit", "TEXT"),
    ("skus", "on_route", "INTEGER DEFAULT 0"),
    ("skus", "display_priority", "INTEGER DEFAULT 10000"),
)


def run_migrations(engine) -> None:
    """Apply all pending column additions. Safe to call repeatedly."""
    with engine.connect() as conn:
        for table, column, col_type in _ADDED_COLUMNS:
            _add_column_if_missing(conn, table, column, col_type)
        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if the table exists and lacks it."""
    inspector = inspect(conn)
    if not inspector.has_table(table):
        return
    existing_columns = {col["name"] for col in inspector.get_columns(table)}
    if column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
