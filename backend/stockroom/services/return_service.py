"""
Return Reconciliation Rules

WHY: A return inverts part of a sale without rewriting it. The sale keeps its
original lines, prices and totals; each SaleItem only accumulates
returned_quantity, and the stock comes back through a RESTOCK movement that
names the originating sale.

RULES:
- A return line is matched to the sale's item by product id.
- returnable = quantity - returned_quantity; asking for more is rejected.
- returned_quantity only moves forward: NONE -> PARTIAL -> FULL.
- A batch is planned in full before anything is applied, so one bad line
  rejects the whole batch.

The TransactionEngine owns locking and the unit of work; this module only
plans and applies the per-item bookkeeping.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..errors import ExcessiveReturn, InvalidQuantity, InvariantViolation, ItemNotFound
from ..models import Sale, SaleItem
from ..validation import coerce_int, coerce_quantity


@dataclass(frozen=True)
class ReturnLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PlannedReturn:
    item: SaleItem
    quantity: int


def normalize_return_lines(returns: Iterable) -> list[ReturnLine]:
    """
    Accept ReturnLine objects or {"product_id", "quantity"} dicts.

    Lines for the same product are summed; lines with quantity 0 are
    invalid rather than silently skipped.
    """
    if returns is None:
        raise InvalidQuantity("At least one return line is required")

    totals: dict[int, int] = {}
    order: list[int] = []
    for raw in returns:
        if isinstance(raw, ReturnLine):
            product_id, quantity = raw.product_id, raw.quantity
        elif isinstance(raw, dict):
            if "product_id" not in raw:
                raise InvalidQuantity("Return line is missing product_id")
            product_id = coerce_int(raw.get("product_id"), "product_id")
            quantity = raw.get("quantity")
        else:
            raise InvalidQuantity("Return lines must be objects with product_id and quantity")
        quantity = coerce_quantity(quantity)
        if product_id not in totals:
            order.append(product_id)
            totals[product_id] = 0
        totals[product_id] += quantity

    if not order:
        raise InvalidQuantity("At least one return line is required")
    return [ReturnLine(product_id=pid, quantity=totals[pid]) for pid in order]


def plan_return(sale: Sale, lines: list[ReturnLine]) -> list[PlannedReturn]:
    """Validate every line against the sale; nothing is mutated."""
    planned: list[PlannedReturn] = []
    for line in lines:
        item = sale.item_for_product(line.product_id)
        if item is None:
            raise ItemNotFound(
                f"Product {line.product_id} is not on sale {sale.document_number}",
                details={"sale_id": sale.id, "product_id": line.product_id},
            )
        returnable = item.returnable_quantity
        if line.quantity > returnable:
            raise ExcessiveReturn(
                f"Cannot return {line.quantity} of {item.product_name}: only {returnable} returnable",
                details={
                    "sale_id": sale.id,
                    "product_id": item.product_id,
                    "requested_quantity": line.quantity,
                    "sold_quantity": item.quantity,
                    "returned_quantity": item.returned_quantity or 0,
                    "returnable_quantity": returnable,
                },
            )
        planned.append(PlannedReturn(item=item, quantity=line.quantity))
    return planned


def apply_return(item: SaleItem, quantity: int) -> None:
    """Move returned_quantity forward; never backwards, never past quantity."""
    if quantity <= 0:
        raise InvariantViolation("Return quantity must be positive when applied")
    new_returned = (item.returned_quantity or 0) + quantity
    if new_returned > item.quantity:
        raise InvariantViolation(
            f"Return would exceed sold quantity for product {item.product_id}",
            details={"product_id": item.product_id},
        )
    item.returned_quantity = new_returned


def return_reason(sale: Sale) -> str:
    return f"Return from sale {sale.document_number}"
