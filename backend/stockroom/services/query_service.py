# Overview: Read-only sorted/filtered views over products, movements, sales and customers.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

from ..errors import ValidationError
from ..models import Customer, Product, Sale, StockMovement
from .customer_service import CustomerStore
from .inventory_service import InventoryStore
from .sales_service import SaleStore

"""
QueryEngine

Views never mutate their input: every function returns a fresh list.

Sort keys are an ordered list of (field, direction). Clicking a column header
cycles that field asc -> desc -> removed. A plain click replaces the whole
list with that one field; an additive (shift) click edits the field in place
within the list, or appends it.

Comparison rules:
- strings compare case-insensitively
- None sorts before any value (ascending)
- ties keep input order (Python's sort is stable)
"""

ASC = "asc"
DESC = "desc"
DIRECTIONS = (ASC, DESC)

ALL_FILTER = "All"


@dataclass(frozen=True)
class SortKey:
    field: str
    direction: str = ASC

    def __post_init__(self):
        if self.direction not in DIRECTIONS:
            raise ValidationError(f"sort direction must be one of {', '.join(DIRECTIONS)}")

    def to_dict(self) -> dict:
        return {"field": self.field, "direction": self.direction}


PRODUCT_SORT_FIELDS = {
    "id", "sku", "name", "category", "description",
    "unit_cost_cents", "margin_percent", "sell_price_cents",
    "stock", "min_stock", "last_restocked_at",
}
DEFAULT_PRODUCT_SORT = (SortKey("category", ASC), SortKey("name", ASC))

SALE_SORT_FIELDS = {"id", "document_number", "occurred_at", "customer_name", "total_cents", "payment_method"}
DEFAULT_SALE_SORT = (SortKey("occurred_at", DESC), SortKey("id", DESC))


def toggle_sort(active: Sequence[SortKey], field: str, additive: bool = False) -> list[SortKey]:
    """Next sort-key list after the user selects `field`."""
    current = list(active)
    idx = next((i for i, k in enumerate(current) if k.field == field), None)

    next_direction: str | None = ASC
    if idx is not None:
        next_direction = DESC if current[idx].direction == ASC else None

    if not additive:
        return [SortKey(field, next_direction)] if next_direction else []

    if idx is not None:
        if next_direction:
            current[idx] = SortKey(field, next_direction)
        else:
            del current[idx]
    elif next_direction:
        current.append(SortKey(field, next_direction))
    return current


def _sort_value(value: Any) -> tuple:
    if value is None:
        return (0, 0)
    if isinstance(value, str):
        return (1, value.casefold())
    return (1, value)


def sort_records(
    records: Iterable,
    keys: Sequence[SortKey],
    accessor: Callable[[Any, str], Any] = getattr,
) -> list:
    """
    Stable lexicographic sort over `keys`.

    Sorting by the least significant key first and working backwards gives
    the same result as one multi-key comparison.
    """
    result = list(records)
    for key in reversed(list(keys)):
        result.sort(
            key=lambda r, f=key.field: _sort_value(accessor(r, f)),
            reverse=key.direction == DESC,
        )
    return result


def parse_sort_param(raw: str | None, allowed: set[str], default: Sequence[SortKey] = ()) -> list[SortKey]:
    """Parse "category:asc,name:desc" into sort keys. Missing direction means asc."""
    if raw is None or not raw.strip():
        return list(default)

    keys: list[SortKey] = []
    seen: set[str] = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        field, _, direction = part.partition(":")
        field = field.strip()
        direction = (direction.strip() or ASC).lower()
        if field not in allowed:
            raise ValidationError(f"Cannot sort by {field!r}")
        if field in seen:
            raise ValidationError(f"Sort field {field!r} given more than once")
        seen.add(field)
        keys.append(SortKey(field, direction))
    return keys


def _contains(haystack: str | None, needle: str) -> bool:
    return bool(haystack) and needle in haystack.casefold()


def _is_all(value: str | None) -> bool:
    return value is None or not value.strip() or value.strip() == ALL_FILTER


# ----------------------------------------------------------------------
# products
# ----------------------------------------------------------------------

def filter_products(products: Iterable[Product], filter_text: str | None = None, category: str | None = None) -> list[Product]:
    needle = (filter_text or "").strip().casefold()
    wanted_category = None if _is_all(category) else category.strip()

    result = []
    for p in products:
        if needle and not (_contains(p.name, needle) or _contains(p.sku, needle) or _contains(p.description, needle)):
            continue
        if wanted_category is not None and p.category != wanted_category:
            continue
        result.append(p)
    return result


def query_products(
    filter_text: str | None = None,
    category: str | None = None,
    sort_keys: Sequence[SortKey] | None = None,
    *,
    inventory: InventoryStore | None = None,
) -> list[Product]:
    """Catalog view. sort_keys=None means the default category/name order; [] means store order."""
    inventory = inventory or InventoryStore()
    keys = DEFAULT_PRODUCT_SORT if sort_keys is None else sort_keys
    return sort_records(filter_products(inventory.all(), filter_text, category), keys)


def low_stock(products: Iterable[Product]) -> list[Product]:
    return [p for p in products if p.stock <= p.min_stock]


# ----------------------------------------------------------------------
# stock movements
# ----------------------------------------------------------------------

def query_stock_movements(
    filter_text: str | None = None,
    *,
    include_orphans: bool = False,
    inventory: InventoryStore | None = None,
) -> list[tuple[str, StockMovement]]:
    """
    Every product's ledger flattened into (product name, movement) rows,
    newest first. The filter matches the product name or the movement kind.
    """
    inventory = inventory or InventoryStore()
    names = {p.id: p.name for p in inventory.all()}
    needle = (filter_text or "").strip().casefold()

    rows = []
    for movement in inventory.all_movements(include_orphans=include_orphans):
        name = names.get(movement.product_id, movement.product_name)
        if needle and not (_contains(name, needle) or _contains(movement.kind, needle)):
            continue
        rows.append((name, movement))
    return rows


# ----------------------------------------------------------------------
# sales and customers
# ----------------------------------------------------------------------

def filter_sales(sales: Iterable[Sale], filter_text: str | None = None, payment_method: str | None = None) -> list[Sale]:
    needle = (filter_text or "").strip().casefold()
    method = None if _is_all(payment_method) else payment_method.strip().upper()

    result = []
    for s in sales:
        if needle and not (
            _contains(s.document_number, needle)
            or _contains(s.customer_name, needle)
            or _contains(s.processed_by, needle)
        ):
            continue
        if method is not None and s.payment_method != method:
            continue
        result.append(s)
    return result


def query_sales(
    filter_text: str | None = None,
    payment_method: str | None = None,
    sort_keys: Sequence[SortKey] | None = None,
    *,
    sales: SaleStore | None = None,
) -> list[Sale]:
    sales = sales or SaleStore()
    keys = DEFAULT_SALE_SORT if sort_keys is None else sort_keys
    return sort_records(filter_sales(sales.all(), filter_text, payment_method), keys)


def query_customers(filter_text: str | None = None, *, customers: CustomerStore | None = None) -> list[Customer]:
    customers = customers or CustomerStore()
    needle = (filter_text or "").strip().casefold()
    return [
        c for c in customers.all()
        if not needle or _contains(c.name, needle) or _contains(c.phone, needle)
    ]
