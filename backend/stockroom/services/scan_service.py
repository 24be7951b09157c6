# Overview: Validation and catalog matching for externally extracted restock candidates.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

from ..errors import ValidationError
from ..money import to_cents
from ..validation import MAX_PRICE_CENTS, coerce_quantity
"""
Scan candidates come from an external document-extraction service as
untyped rows shaped roughly like {name, sku?, quantity, price}. Nothing here
talks to that service; we only validate its output and decide, per row,
whether it refers to an existing product.

Matching order:
1. exact SKU (when the row carries one)
2. case-insensitive, whitespace-trimmed product name
"""

SKU_KEYS = ("sku", "identifier", "code")
PRICE_KEYS = ("unit_price", "unitPrice", "price")


@dataclass(frozen=True)
class ScanCandidate:
    name: str
    quantity: int
    unit_price_cents: int
    sku: str | None = None


@dataclass(frozen=True)
class Matched:
    candidate: ScanCandidate
    product_id: int


@dataclass(frozen=True)
class Unmatched:
    candidate: ScanCandidate


ScanMatch = Union[Matched, Unmatched]


def _first_present(row: dict, keys: tuple[str, ...]):
    for key in keys:
        if row.get(key) not in (None, ""):
            return row[key]
    return None


def parse_scan_candidate(row: dict, index: int = 0) -> ScanCandidate:
    if not isinstance(row, dict):
        raise ValidationError(f"row {index}: expected an object")

    name = str(row.get("name") or "").strip()
    if not name:
        raise ValidationError(f"row {index}: name is required")

    if "quantity" not in row:
        raise ValidationError(f"row {index}: quantity is required")
    raw_qty = row["quantity"]
    # Extraction output is JSON, so whole numbers often arrive as 3.0
    if isinstance(raw_qty, float) and raw_qty.is_integer():
        raw_qty = int(raw_qty)
    try:
        quantity = coerce_quantity(raw_qty)
    except ValidationError as e:
        raise ValidationError(f"row {index}: {e}")

    if "unit_price_cents" in row:
        price_cents = row["unit_price_cents"]
        if not isinstance(price_cents, int) or isinstance(price_cents, bool):
            raise ValidationError(f"row {index}: unit_price_cents must be an integer")
    else:
        raw_price = _first_present(row, PRICE_KEYS)
        if raw_price is None:
            raise ValidationError(f"row {index}: unit price is required")
        try:
            price_cents = to_cents(raw_price)
        except ValidationError as e:
            raise ValidationError(f"row {index}: {e}")
    if price_cents < 0 or price_cents > MAX_PRICE_CENTS:
        raise ValidationError(f"row {index}: unit price out of range")

    sku = _first_present(row, SKU_KEYS)
    sku = str(sku).strip() if sku is not None else None

    return ScanCandidate(name=name, quantity=quantity, unit_price_cents=price_cents, sku=sku or None)


def parse_scan_candidates(rows: Iterable) -> list[ScanCandidate]:
    if rows is None or isinstance(rows, (str, bytes, dict)):
        raise ValidationError("candidates must be a list")
    candidates = [parse_scan_candidate(row, i) for i, row in enumerate(rows)]
    if not candidates:
        raise ValidationError("candidates must not be empty")
    return candidates


def _normalize_name(name: str) -> str:
    return name.strip().casefold()


def match_candidate(candidate: ScanCandidate, products: Iterable) -> ScanMatch:
    products = list(products)
    if candidate.sku:
        for p in products:
            if p.sku == candidate.sku:
                return Matched(candidate=candidate, product_id=p.id)
    wanted = _normalize_name(candidate.name)
    for p in products:
        if _normalize_name(p.name) == wanted:
            return Matched(candidate=candidate, product_id=p.id)
    return Unmatched(candidate=candidate)


def match_candidates(candidates: Iterable[ScanCandidate], products: Iterable) -> list[ScanMatch]:
    products = list(products)
    return [match_candidate(c, products) for c in candidates]
