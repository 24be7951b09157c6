"""
Return reconciliation tests, including the full restock -> sale -> return
walkthrough.
"""

import pytest

from stockroom.errors import (
    ExcessiveReturn,
    InvalidQuantity,
    InvariantViolation,
    ItemNotFound,
    ProductNotFound,
    SaleNotFound,
)
from stockroom.models.inventory import MOVEMENT_INITIAL, MOVEMENT_RESTOCK, MOVEMENT_SALE
from stockroom.models.sales import RETURN_STATUS_FULL, RETURN_STATUS_NONE, RETURN_STATUS_PARTIAL
from stockroom.services import transaction_engine
from stockroom.services.ledger_service import latest_movement, movements_for, verify_ledger
from stockroom.services.return_service import ReturnLine, normalize_return_lines


def _sell(engine, product, quantity, price=1000):
    return engine.complete_sale([{"product_id": product.id, "quantity": quantity, "unit_price_cents": price}])


def test_restock_sale_return_walkthrough(db_session, engine, make_product):
    product = make_product(name="Widget", stock=10, min_stock=2)

    engine.restock(product.id, 5)
    m = latest_movement(product.id)
    assert (m.kind, m.amount, m.balance_after) == (MOVEMENT_RESTOCK, 5, 15)

    sale = _sell(engine, product, 3, price=1000)
    assert sale.total_cents == 3150
    db_session.expire_all()
    assert product.stock == 12
    m = latest_movement(product.id)
    assert (m.kind, m.amount, m.balance_after) == (MOVEMENT_SALE, -3, 12)

    sale = engine.process_return(sale.id, [{"product_id": product.id, "quantity": 1}])
    item = sale.items[0]
    assert item.returned_quantity == 1
    assert item.return_status == RETURN_STATUS_PARTIAL
    db_session.expire_all()
    assert product.stock == 13
    m = latest_movement(product.id)
    assert (m.kind, m.amount, m.balance_after) == (MOVEMENT_RESTOCK, 1, 13)
    assert sale.document_number in m.reason
    assert m.reference == sale.document_number

    with pytest.raises(ExcessiveReturn) as exc:
        engine.process_return(sale.id, [{"product_id": product.id, "quantity": 3}])
    assert exc.value.details["returnable_quantity"] == 2

    db_session.expire_all()
    assert product.stock == 13
    assert sale.items[0].returned_quantity == 1
    assert verify_ledger(product) == 13
    assert len(movements_for(product.id)) == 4


def test_full_return_moves_status_to_full(db_session, engine, make_product):
    product = make_product(stock=5)
    sale = _sell(engine, product, 2)
    assert sale.items[0].return_status == RETURN_STATUS_NONE

    sale = engine.process_return(sale.id, [ReturnLine(product_id=product.id, quantity=2)])

    assert sale.items[0].return_status == RETURN_STATUS_FULL
    assert sale.items[0].returnable_quantity == 0
    with pytest.raises(ExcessiveReturn):
        engine.process_return(sale.id, [{"product_id": product.id, "quantity": 1}])


def test_one_bad_line_rejects_whole_batch(db_session, engine, make_product):
    a = make_product(stock=5)
    b = make_product(stock=5)
    sale = engine.complete_sale([
        {"product_id": a.id, "quantity": 2},
        {"product_id": b.id, "quantity": 1},
    ])

    with pytest.raises(ExcessiveReturn):
        engine.process_return(sale.id, [
            {"product_id": a.id, "quantity": 1},
            {"product_id": b.id, "quantity": 2},
        ])

    db_session.expire_all()
    assert a.stock == 3
    assert b.stock == 4
    assert [i.returned_quantity for i in sale.items] == [0, 0]


def test_return_rolls_back_when_second_ledger_write_fails(db_session, engine, make_product, monkeypatch):
    a = make_product(stock=5)
    b = make_product(stock=5)
    sale = engine.complete_sale([
        {"product_id": a.id, "quantity": 2},
        {"product_id": b.id, "quantity": 1},
    ])
    real_append = transaction_engine.append_movement
    calls = []

    def append(product, *args, **kwargs):
        calls.append(product.id)
        if len(calls) == 2:
            raise InvariantViolation("ledger write failed")
        return real_append(product, *args, **kwargs)

    monkeypatch.setattr(transaction_engine, "append_movement", append)

    with pytest.raises(InvariantViolation):
        engine.process_return(sale.id, [
            {"product_id": a.id, "quantity": 1},
            {"product_id": b.id, "quantity": 1},
        ])

    assert len(calls) == 2
    db_session.expire_all()
    assert (a.stock, b.stock) == (3, 4)
    assert [m.kind for m in movements_for(a.id)] == [MOVEMENT_SALE, MOVEMENT_INITIAL]
    assert [i.returned_quantity for i in sale.items] == [0, 0]
    assert verify_ledger(a) == 3


def test_return_of_product_not_on_sale(db_session, engine, make_product):
    sold = make_product(stock=5)
    other = make_product(stock=5)
    sale = _sell(engine, sold, 1)

    with pytest.raises(ItemNotFound):
        engine.process_return(sale.id, [{"product_id": other.id, "quantity": 1}])


def test_return_unknown_sale(db_session, engine, make_product):
    product = make_product()
    with pytest.raises(SaleNotFound):
        engine.process_return(424242, [{"product_id": product.id, "quantity": 1}])


def test_return_needs_positive_quantity(db_session, engine, make_product):
    product = make_product(stock=5)
    sale = _sell(engine, product, 2)
    with pytest.raises(InvalidQuantity):
        engine.process_return(sale.id, [{"product_id": product.id, "quantity": 0}])
    with pytest.raises(InvalidQuantity):
        engine.process_return(sale.id, [])


def test_duplicate_return_lines_are_summed(db_session, engine, make_product):
    product = make_product(stock=5)
    sale = _sell(engine, product, 3)

    sale = engine.process_return(sale.id, [
        {"product_id": product.id, "quantity": 1},
        {"product_id": product.id, "quantity": 1},
    ])

    assert sale.items[0].returned_quantity == 2
    # One RESTOCK for the summed line
    assert latest_movement(product.id).amount == 2


def test_duplicate_lines_summed_past_returnable_fail(db_session, engine, make_product):
    product = make_product(stock=5)
    sale = _sell(engine, product, 2)
    with pytest.raises(ExcessiveReturn):
        engine.process_return(sale.id, [
            {"product_id": product.id, "quantity": 2},
            {"product_id": product.id, "quantity": 1},
        ])


def test_return_after_product_deleted(db_session, engine, make_product):
    product = make_product(stock=5)
    product_id = product.id
    sale = _sell(engine, product, 2)
    engine.delete_product(product_id)

    with pytest.raises(ProductNotFound):
        engine.process_return(sale.id, [{"product_id": product_id, "quantity": 1}])

    db_session.expire_all()
    assert sale.items[0].returned_quantity == 0


def test_sale_totals_untouched_by_returns(db_session, engine, make_product):
    product = make_product(stock=5)
    sale = _sell(engine, product, 2, price=500)
    total = sale.total_cents

    sale = engine.process_return(sale.id, [{"product_id": product.id, "quantity": 1}])

    assert sale.total_cents == total
    assert sale.returned_value_cents == 500


def test_normalize_return_lines_keeps_first_seen_order():
    lines = normalize_return_lines([
        {"product_id": 7, "quantity": 1},
        {"product_id": 3, "quantity": 2},
        {"product_id": 7, "quantity": 4},
    ])
    assert lines == [ReturnLine(product_id=7, quantity=5), ReturnLine(product_id=3, quantity=2)]


def test_normalize_return_lines_rejects_missing_product():
    with pytest.raises(InvalidQuantity):
        normalize_return_lines([{"quantity": 1}])
