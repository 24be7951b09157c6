"""
Stock ledger tests.

Covers the INITIAL movement, append semantics, replay/verify, and the
explicit newest-first order.
"""

from datetime import datetime

import pytest

from stockroom.errors import InsufficientStock, InvalidQuantity, InvariantViolation
from stockroom.models import Product, StockMovement
from stockroom.models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_INITIAL,
    MOVEMENT_RESTOCK,
    MOVEMENT_SALE,
)
from stockroom.services.ledger_service import (
    append_movement,
    initialize_ledger,
    movements_for,
    replay_balance,
    verify_ledger,
)


def test_create_product_writes_initial_movement(db_session, make_product):
    product = make_product(stock=10)

    movements = movements_for(product.id, newest_first=False)
    assert len(movements) == 1
    initial = movements[0]
    assert initial.kind == MOVEMENT_INITIAL
    assert initial.amount == 10
    assert initial.balance_after == 10
    assert initial.sequence == 1
    assert product.stock == 10


def test_zero_initial_stock_is_allowed(db_session, make_product):
    product = make_product(stock=0)
    assert product.stock == 0
    assert movements_for(product.id)[0].balance_after == 0


def test_initialize_twice_is_invariant_violation(db_session, make_product):
    product = make_product(stock=3)
    with pytest.raises(InvariantViolation):
        initialize_ledger(product, 5)
    db_session.rollback()


def test_initialize_rejects_negative_stock(db_session):
    product = Product(sku="NEG-1", name="Negative", category="General")
    db_session.add(product)
    db_session.flush()
    with pytest.raises(InvalidQuantity):
        initialize_ledger(product, -1)
    db_session.rollback()


def test_append_restock_updates_balance_and_restock_time(db_session, make_product):
    product = make_product(stock=10)
    when = datetime(2026, 4, 1, 12, 0, 0)

    balance, movement = append_movement(product, MOVEMENT_RESTOCK, 5, occurred_at=when)
    db_session.commit()

    assert balance == 15
    assert product.stock == 15
    assert movement.kind == MOVEMENT_RESTOCK
    assert movement.amount == 5
    assert movement.balance_after == 15
    assert movement.sequence == 2
    assert product.last_restocked_at == when


def test_append_sale_does_not_touch_restock_time(db_session, make_product):
    product = make_product(stock=10)
    before = product.last_restocked_at

    append_movement(product, MOVEMENT_SALE, -4, occurred_at=datetime(2026, 4, 2))
    db_session.commit()

    assert product.stock == 6
    assert product.last_restocked_at == before


def test_append_below_zero_raises_and_leaves_stock(db_session, make_product):
    product = make_product(stock=2)

    with pytest.raises(InsufficientStock) as exc:
        append_movement(product, MOVEMENT_ADJUSTMENT, -3)

    assert exc.value.details["on_hand"] == 2
    assert exc.value.details["requested_quantity"] == 3
    assert product.stock == 2
    db_session.rollback()
    assert len(movements_for(product.id)) == 1


def test_append_initial_kind_is_rejected(db_session, make_product):
    product = make_product()
    with pytest.raises(InvariantViolation):
        append_movement(product, MOVEMENT_INITIAL, 1)


def test_append_detects_stock_drift(db_session, make_product):
    product = make_product(stock=5)
    # Bypass the ledger on purpose
    product.stock = 7
    with pytest.raises(InvariantViolation):
        append_movement(product, MOVEMENT_RESTOCK, 1)
    db_session.rollback()


def test_replay_reproduces_stock(db_session, make_product):
    product = make_product(stock=10)
    append_movement(product, MOVEMENT_RESTOCK, 5)
    append_movement(product, MOVEMENT_SALE, -3)
    append_movement(product, MOVEMENT_ADJUSTMENT, 1)
    db_session.commit()

    movements = movements_for(product.id)
    assert replay_balance(movements) == product.stock == 13
    assert verify_ledger(product) == 13


def test_verify_reports_tampered_entry(db_session, make_product):
    product = make_product(stock=10)
    append_movement(product, MOVEMENT_RESTOCK, 5)
    db_session.commit()

    tampered = db_session.query(StockMovement).filter_by(product_id=product.id, sequence=2).one()
    tampered.balance_after = 16
    db_session.flush()

    with pytest.raises(InvariantViolation) as exc:
        verify_ledger(product)
    assert "sequence 2" in str(exc.value)
    db_session.rollback()


def test_movements_newest_first_with_equal_timestamps(db_session, make_product):
    product = make_product(stock=1)
    same = datetime(2026, 5, 1, 8, 30)
    append_movement(product, MOVEMENT_RESTOCK, 1, occurred_at=same)
    append_movement(product, MOVEMENT_RESTOCK, 2, occurred_at=same)
    db_session.commit()

    newest = movements_for(product.id)
    assert [m.amount for m in newest[:2]] == [2, 1]
    assert [m.sequence for m in newest] == sorted((m.sequence for m in newest), reverse=True)
