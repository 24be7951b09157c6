# Overview: Per-product stock ledger; the only code that changes Product.stock.

from __future__ import annotations

from datetime import datetime

from ..errors import InsufficientStock, InvalidQuantity, InvariantViolation
from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_INITIAL, MOVEMENT_KINDS, MOVEMENT_RESTOCK
from ..time_utils import utcnow
from .invariants import assert_ledger_consistent
"""
Stock Ledger Invariants (authoritative)

- Every product ledger starts with exactly one INITIAL movement where
  amount == balance_after == starting stock.
- Oldest -> newest: balance_after[i] == balance_after[i-1] + amount[i].
- The newest movement's balance_after == Product.stock.
- Movements are append-only: no update, no delete (purging the ledger of a
  deleted product is a store policy, not a ledger operation).
- Order is explicit: (occurred_at desc, sequence desc). sequence is per
  product and strictly increasing, so equal timestamps still sort.
- RESTOCK movements also stamp Product.last_restocked_at.
"""


def latest_movement(product_id: int) -> StockMovement | None:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.sequence.desc())
        .first()
    )


def movements_for(product_id: int, *, newest_first: bool = True) -> list[StockMovement]:
    q = db.session.query(StockMovement).filter(StockMovement.product_id == product_id)
    if newest_first:
        q = q.order_by(StockMovement.occurred_at.desc(), StockMovement.sequence.desc())
    else:
        q = q.order_by(StockMovement.sequence.asc())
    return q.all()


def initialize_ledger(
    product: Product,
    starting_stock: int,
    *,
    occurred_at: datetime | None = None,
) -> StockMovement:
    """
    Write the INITIAL movement. Called exactly once, at product creation.
    """
    if starting_stock is None or starting_stock < 0:
        raise InvalidQuantity("Initial stock must be zero or greater")
    if product.id is None:
        db.session.flush()
    if latest_movement(product.id) is not None:
        raise InvariantViolation(
            f"Ledger for product {product.id} is already initialized",
            details={"product_id": product.id},
        )

    occurred_dt = occurred_at or utcnow()
    movement = StockMovement(
        product_id=product.id,
        product_name=product.name,
        sequence=1,
        kind=MOVEMENT_INITIAL,
        amount=starting_stock,
        balance_after=starting_stock,
        reason="Initial stock",
        occurred_at=occurred_dt,
    )
    db.session.add(movement)
    product.stock = starting_stock
    product.last_restocked_at = occurred_dt
    db.session.flush()
    return movement


def append_movement(
    product: Product,
    kind: str,
    amount: int,
    *,
    reason: str | None = None,
    reference: str | None = None,
    occurred_at: datetime | None = None,
) -> tuple[int, StockMovement]:
    """
    Append one movement and move Product.stock to the new balance.

    Returns (new_balance, movement). Raises InsufficientStock when the
    balance would go negative; the caller's unit of work is left untouched
    in that case.
    """
    if kind not in MOVEMENT_KINDS or kind == MOVEMENT_INITIAL:
        raise InvariantViolation(f"Cannot append movement of kind {kind!r}")

    new_balance = product.stock + amount
    if new_balance < 0:
        raise InsufficientStock(
            f"Insufficient stock for {product.name}: requested {-amount}, available {product.stock}",
            details={
                "product_id": product.id,
                "product_name": product.name,
                "requested_quantity": -amount,
                "on_hand": product.stock,
            },
        )

    tail = latest_movement(product.id)
    if tail is None:
        raise InvariantViolation(
            f"Ledger for product {product.id} was never initialized",
            details={"product_id": product.id},
        )
    if tail.balance_after != product.stock:
        raise InvariantViolation(
            f"Ledger balance {tail.balance_after} disagrees with stock {product.stock} for product {product.id}",
            details={"product_id": product.id, "ledger_balance": tail.balance_after, "stock": product.stock},
        )

    occurred_dt = occurred_at or utcnow()
    movement = StockMovement(
        product_id=product.id,
        product_name=product.name,
        sequence=tail.sequence + 1,
        kind=kind,
        amount=amount,
        balance_after=new_balance,
        reason=reason,
        reference=reference,
        occurred_at=occurred_dt,
    )
    db.session.add(movement)

    product.stock = new_balance
    if kind == MOVEMENT_RESTOCK:
        product.last_restocked_at = occurred_dt

    db.session.flush()
    return new_balance, movement


def replay_balance(movements: list[StockMovement]) -> int:
    """Balance reproduced by applying movements oldest -> newest."""
    balance = 0
    for m in sorted(movements, key=lambda m: m.sequence):
        balance += m.amount
    return balance


def verify_ledger(product: Product) -> int:
    """
    Full replay check for one product. Returns the verified balance or
    raises InvariantViolation describing the first bad entry.
    """
    return assert_ledger_consistent(product.id, product.stock, movements_for(product.id, newest_first=False))
