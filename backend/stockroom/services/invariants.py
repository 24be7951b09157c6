# Overview: Shared invariant checks for ledgers, sales and returns.

from __future__ import annotations

from typing import Iterable, Sequence

from ..errors import InvariantViolation
from ..money import compute_tax_cents
from ..models.inventory import MOVEMENT_INITIAL


def ledger_problems(product_id: int, stock: int, movements: Sequence) -> list[str]:
    """
    Replay a ledger oldest -> newest and describe every inconsistency.

    movements must be ordered by sequence ascending. An empty list means the
    ledger is sound.
    """
    problems: list[str] = []
    if not movements:
        return [f"product {product_id}: ledger is empty"]

    first = movements[0]
    if first.kind != MOVEMENT_INITIAL:
        problems.append(f"product {product_id}: first movement is {first.kind}, expected INITIAL")
    if first.amount != first.balance_after:
        problems.append(
            f"product {product_id}: INITIAL amount {first.amount} != balance {first.balance_after}"
        )

    balance = first.amount
    previous_seq = first.sequence
    for m in movements[1:]:
        if m.kind == MOVEMENT_INITIAL:
            problems.append(f"product {product_id}: extra INITIAL movement at sequence {m.sequence}")
        if m.sequence <= previous_seq:
            problems.append(f"product {product_id}: sequence {m.sequence} is not increasing")
        balance += m.amount
        if m.balance_after != balance:
            problems.append(
                f"product {product_id}: sequence {m.sequence} balance {m.balance_after}, replay gives {balance}"
            )
            balance = m.balance_after
        if m.balance_after < 0:
            problems.append(f"product {product_id}: negative balance at sequence {m.sequence}")
        previous_seq = m.sequence

    if balance != stock:
        problems.append(f"product {product_id}: ledger ends at {balance}, stock is {stock}")
    return problems


def assert_ledger_consistent(product_id: int, stock: int, movements: Sequence) -> int:
    problems = ledger_problems(product_id, stock, movements)
    if problems:
        raise InvariantViolation(problems[0], details={"product_id": product_id, "problems": problems})
    return stock


def assert_ledger_tail(product, movement) -> None:
    """The movement just written must be the product's current balance."""
    if movement.product_id != product.id or movement.balance_after != product.stock:
        raise InvariantViolation(
            f"Movement balance {movement.balance_after} does not match stock {product.stock} "
            f"for product {product.id}",
            details={"product_id": product.id, "movement_sequence": movement.sequence},
        )
    if product.stock < 0:
        raise InvariantViolation(f"Product {product.id} stock is negative", details={"product_id": product.id})


def assert_return_bounds(items: Iterable) -> None:
    for item in items:
        returned = item.returned_quantity or 0
        if returned < 0 or returned > item.quantity:
            raise InvariantViolation(
                f"Returned quantity {returned} outside 0..{item.quantity} for product {item.product_id}",
                details={"sale_id": item.sale_id, "product_id": item.product_id},
            )


def assert_sale_totals(sale) -> None:
    subtotal = 0
    for item in sale.items:
        if item.line_total_cents != item.quantity * item.unit_price_cents:
            raise InvariantViolation(
                f"Line total mismatch for product {item.product_id}",
                details={"product_id": item.product_id},
            )
        subtotal += item.line_total_cents
    if subtotal != sale.subtotal_cents:
        raise InvariantViolation("Sale subtotal does not match its lines")
    if sale.tax_cents != compute_tax_cents(sale.subtotal_cents, sale.tax_rate_bps):
        raise InvariantViolation("Sale tax does not match its rate")
    if sale.total_cents != sale.subtotal_cents + sale.tax_cents:
        raise InvariantViolation("Sale total does not equal subtotal + tax")
