"""
Config-driven bulk query generation with a baseline equivalence check.

Only the metafield accessor lines come from configuration; the rest of the
document is a fixed template. Operators can toggle or re-key metafields
without being able to reshape the query, and validate() proves that the
generated text still normalizes to the trusted baseline.
"""
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlmodel import Session, select

from catalog_sync.models.catalog import FieldMappingRow
from catalog_sync.shopify.errors import ConfigValidationError
from catalog_sync.shopify.queries import BASELINE_BULK_QUERY

SCALAR = "scalar"
OBJECT = "object"
CONNECTION = "connection"
METAFIELD = "metafield"
FIELD_TYPES = frozenset({SCALAR, OBJECT, CONNECTION, METAFIELD})

EXPECTED_METAFIELD_COUNT = 10
DEFAULT_SERVICE = "bulk_sync"

_INDENT_NODE = " " * 14
_INDENT_CHILD = " " * 16

_METAFIELD_RE = re.compile(r'metafield\(namespace:\s*"([^"]+)",\s*key:\s*"([^"]+)"\)')


@dataclass(frozen=True)
class FieldMapping:
    path: str
    type: str
    sort_order: int
    metafield_namespace: Optional[str] = None
    metafield_key: Optional[str] = None
    enabled: bool = True

    @property
    def alias(self) -> Optional[str]:
        """product.mfFabric.value -> mfFabric"""
        parts = self.path.split(".")
        return parts[1] if len(parts) == 3 else None


def _mf(sort_order: int, alias: str, key: str) -> FieldMapping:
    return FieldMapping(f"product.{alias}.value", METAFIELD, sort_order, "custom", key)


# Known-good configuration: reproduces BASELINE_BULK_QUERY exactly.
DEFAULT_FIELD_MAPPINGS: Tuple[FieldMapping, ...] = (
    FieldMapping("id", SCALAR, 1),
    FieldMapping("sku", SCALAR, 2),
    FieldMapping("price", SCALAR, 3),
    FieldMapping("inventoryQuantity", SCALAR, 4),
    FieldMapping("displayName", SCALAR, 5),
    FieldMapping("title", SCALAR, 6),
    FieldMapping("image.url", SCALAR, 7),
    FieldMapping("selectedOptions.name", OBJECT, 8),
    FieldMapping("selectedOptions.value", OBJECT, 9),
    FieldMapping("product.id", SCALAR, 10),
    FieldMapping("product.title", SCALAR, 11),
    FieldMapping("product.status", SCALAR, 12),
    FieldMapping("product.productType", SCALAR, 13),
    FieldMapping("product.featuredMedia.preview.image.url", SCALAR, 14),
    FieldMapping("product.images.edges.node.url", CONNECTION, 15),
    _mf(16, "mfOrderEntryCollection", "order_entry_collection"),
    _mf(17, "mfOrderEntryDescription", "label_title"),
    _mf(18, "mfFabric", "fabric"),
    _mf(19, "mfColor", "color"),
    _mf(20, "mfFeatures", "features"),
    _mf(21, "mfMSRP", "msrp"),
    _mf(22, "mfCADWSPrice", "cad_ws_price"),
    _mf(23, "mfUSDWSPrice", "us_ws_price"),
    _mf(24, "mfMSRPCAD", "msrp_cad"),
    _mf(25, "mfMSRPUSD", "msrp_us"),
    FieldMapping("inventoryItem.id", SCALAR, 26),
    FieldMapping("inventoryItem.measurement.weight.unit", SCALAR, 27),
    FieldMapping("inventoryItem.measurement.weight.value", SCALAR, 28),
    FieldMapping("inventoryItem.inventoryLevels.edges.node.id", CONNECTION, 29),
    FieldMapping("inventoryItem.inventoryLevels.edges.node.quantities.name", SCALAR, 30),
    FieldMapping("inventoryItem.inventoryLevels.edges.node.quantities.quantity", SCALAR, 31),
)


@dataclass(frozen=True)
class ValidationResult:
    match: bool
    normalized_baseline: str
    normalized_generated: str
    differences: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class QueryConfig:
    """
    Immutable description of which bulk query a sync should submit.

    With no field_mappings the baseline is used verbatim. With mappings, the
    generated query is used only if it matches the baseline.
    """

    baseline: str = BASELINE_BULK_QUERY
    field_mappings: Optional[Tuple[FieldMapping, ...]] = None
    expected_metafields: int = EXPECTED_METAFIELD_COUNT

    def resolve(self) -> str:
        if self.field_mappings is None:
            return self.baseline
        generated = generate(self.field_mappings, expected_metafields=self.expected_metafields)
        result = validate(generated, self.baseline)
        if not result.match:
            preview = "; ".join(result.differences[:3])
            raise ConfigValidationError(
                f"Generated query differs from baseline ({len(result.differences)} diff lines): {preview}"
            )
        return generated


def generate(
    mappings: Iterable[FieldMapping],
    *,
    expected_metafields: int = EXPECTED_METAFIELD_COUNT,
) -> str:
    """
    Build the bulk mutation text from field mappings.

    Raises:
        ConfigValidationError: wrong number of enabled metafield entries, or
            an entry that doesn't follow the product.mfXxx.value convention.
    """
    metafields = sorted(
        (m for m in mappings if m.enabled and m.type == METAFIELD),
        key=lambda m: m.sort_order,
    )
    if len(metafields) != expected_metafields:
        raise ConfigValidationError(
            f"Expected exactly {expected_metafields} metafields for {DEFAULT_SERVICE}, "
            f"found {len(metafields)}. Check field mappings with type='metafield'."
        )

    lines = []
    for mf in metafields:
        alias = mf.alias
        if not mf.path.startswith("product.") or not mf.path.endswith(".value") or not alias \
                or not alias.startswith("mf"):
            raise ConfigValidationError(
                f"Invalid metafield path '{mf.path}'. "
                "Expected 'product.mfXxx.value' where the alias starts with 'mf'."
            )
        if not mf.metafield_namespace or not mf.metafield_key:
            raise ConfigValidationError(f"Metafield {mf.path} is missing namespace/key")
        lines.append(
            f'{_INDENT_CHILD}{alias}: metafield(namespace: "{mf.metafield_namespace}", '
            f'key: "{mf.metafield_key}") {{ value }}'
        )

    return _TEMPLATE.replace("{metafields}", "\n".join(lines))


def normalize(query: str) -> str:
    """Trim each line, drop blank lines, rejoin with newlines."""
    return "\n".join(line.strip() for line in query.split("\n") if line.strip())


def line_diff(baseline: str, generated: str) -> List[str]:
    """Line-indexed differences between two normalized queries."""
    left = baseline.split("\n")
    right = generated.split("\n")
    diffs: List[str] = []
    for i in range(max(len(left), len(right))):
        a = left[i] if i < len(left) else None
        b = right[i] if i < len(right) else None
        if a != b:
            diffs.append(f"Line {i + 1}:")
            diffs.append(f"  Baseline:  {a if a is not None else '(missing)'}")
            diffs.append(f"  Generated: {b if b is not None else '(missing)'}")
    return diffs


def validate(generated: str, baseline: str = BASELINE_BULK_QUERY) -> ValidationResult:
    norm_baseline = normalize(baseline)
    norm_generated = normalize(generated)
    match = norm_baseline == norm_generated
    return ValidationResult(
        match=match,
        normalized_baseline=norm_baseline,
        normalized_generated=norm_generated,
        differences=[] if match else line_diff(norm_baseline, norm_generated),
    )


def check_mappings(
    mappings: Sequence[FieldMapping], baseline: str = BASELINE_BULK_QUERY
) -> List[str]:
    """
    Pre-flight checks on a mapping set before it is persisted.

    Returns a list of human-readable issues; empty means the set is usable.
    """
    issues: List[str] = []
    in_query = {f"{ns}:{key}" for ns, key in _METAFIELD_RE.findall(baseline)}
    seen = set()
    for m in mappings:
        if m.type not in FIELD_TYPES:
            issues.append(f"{m.path}: unknown field type '{m.type}'")
        if m.type != METAFIELD:
            continue
        if not m.metafield_namespace or not m.metafield_key:
            issues.append(f"Metafield {m.path} missing namespace/key")
            continue
        ref = f"{m.metafield_namespace}:{m.metafield_key}"
        seen.add(ref)
        if ref not in in_query:
            issues.append(f"Metafield {m.path} has key '{m.metafield_key}' not found in baseline query")
    for ref in sorted(in_query - seen):
        issues.append(f"Baseline query has metafield '{ref}' not present in mappings")

    orders = sorted(m.sort_order for m in mappings)
    if len(set(orders)) != len(orders):
        issues.append("Duplicate sort_order values detected")
    elif orders != list(range(1, len(orders) + 1)):
        issues.append("sort_order values are not sequential from 1")
    return issues


# ─── Persistence ──────────────────────────────────────────────────────────────

def load_field_mappings(session: Session, service_name: str = DEFAULT_SERVICE) -> Tuple[FieldMapping, ...]:
    """Enabled mappings for a service, ordered by sort_order."""
    rows = session.exec(
        select(FieldMappingRow)
        .where(FieldMappingRow.service_name == service_name)
        .where(FieldMappingRow.enabled == True)  # noqa: E712
        .order_by(FieldMappingRow.sort_order)
    ).all()
    return tuple(
        FieldMapping(
            path=row.field_path,
            type=row.field_type,
            sort_order=row.sort_order,
            metafield_namespace=row.metafield_namespace,
            metafield_key=row.metafield_key,
            enabled=row.enabled,
        )
        for row in rows
    )


def seed_field_mappings(
    session: Session,
    mappings: Sequence[FieldMapping] = DEFAULT_FIELD_MAPPINGS,
    service_name: str = DEFAULT_SERVICE,
) -> Tuple[int, int]:
    """
    Insert or refresh mappings keyed by field path. Returns (created, updated).

    Raises ConfigValidationError if the mapping set fails check_mappings().
    """
    issues = check_mappings(mappings)
    if issues:
        raise ConfigValidationError(f"Seed validation failed: {', '.join(issues)}")

    created = updated = 0
    for m in mappings:
        row = session.exec(
            select(FieldMappingRow)
            .where(FieldMappingRow.service_name == service_name)
            .where(FieldMappingRow.field_path == m.path)
        ).first()
        if row is None:
            row = FieldMappingRow(service_name=service_name, field_path=m.path, field_type=m.type)
            created += 1
        else:
            updated += 1
        row.field_type = m.type
        row.sort_order = m.sort_order
        row.metafield_namespace = m.metafield_namespace
        row.metafield_key = m.metafield_key
        row.enabled = m.enabled
        session.add(row)
    session.commit()
    return created, updated


_TEMPLATE = '''
  mutation {{
    bulkOperationRunQuery(
      query: """
      {{
        productVariants {{
          edges {{
            node {{
{node}id
{node}sku
{node}price
{node}inventoryQuantity
{node}displayName
{node}title
{node}image {{ url }}
{node}selectedOptions {{ name value }}
{node}product {{
{child}id
{child}title
{child}status
{child}productType
{child}featuredMedia {{ preview {{ image {{ url }} }} }}
{child}images(first: 1) {{ edges {{ node {{ url }} }} }}
{{metafields}}
{node}}}
{node}inventoryItem {{
{child}id
{child}measurement {{ weight {{ unit value }} }}
{child}inventoryLevels(first: 10) {{
{child}  edges {{
{child}    node {{
{child}      id
{child}      quantities(names: ["incoming", "committed"]) {{ name quantity }}
{child}    }}
{child}  }}
{child}}}
{node}}}
            }}
          }}
        }}
      }}
      """
    ) {{
      bulkOperation {{ id status url }}
      userErrors {{ field message }}
    }}
  }}
'''.format(node=_INDENT_NODE, child=_INDENT_CHILD)
