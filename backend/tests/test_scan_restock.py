"""
Scan candidate validation, catalog matching and restock_from_scan.
"""

from types import SimpleNamespace

import pytest

from stockroom.errors import ValidationError
from stockroom.models import Product
from stockroom.models.inventory import DEFAULT_CATEGORY, MOVEMENT_INITIAL, MOVEMENT_RESTOCK
from stockroom.services.ledger_service import latest_movement, movements_for
from stockroom.services.scan_service import (
    Matched,
    ScanCandidate,
    Unmatched,
    match_candidate,
    match_candidates,
    parse_scan_candidate,
    parse_scan_candidates,
)


# ----------------------------------------------------------------------
# parsing
# ----------------------------------------------------------------------

def test_parse_candidate_with_currency_price():
    c = parse_scan_candidate({"name": "  Blue Pen ", "quantity": 3, "price": "1.25", "sku": "PEN-B"})
    assert c == ScanCandidate(name="Blue Pen", quantity=3, unit_price_cents=125, sku="PEN-B")


def test_parse_candidate_accepts_whole_float_quantity_and_cents():
    c = parse_scan_candidate({"name": "Cable", "quantity": 4.0, "unit_price_cents": 399})
    assert c.quantity == 4
    assert c.unit_price_cents == 399
    assert c.sku is None


@pytest.mark.parametrize("row, message", [
    ({"quantity": 1, "price": 1}, "name"),
    ({"name": "X", "price": 1}, "quantity"),
    ({"name": "X", "quantity": 0, "price": 1}, "quantity"),
    ({"name": "X", "quantity": 2.5, "price": 1}, "quantity"),
    ({"name": "X", "quantity": 1}, "price"),
    ({"name": "X", "quantity": 1, "price": "-2"}, "price"),
    ({"name": "X", "quantity": 1, "price": "abc"}, "amount"),
])
def test_parse_candidate_rejects(row, message):
    with pytest.raises(ValidationError) as exc:
        parse_scan_candidate(row, 4)
    assert str(exc.value).startswith("row 4:")
    assert message in str(exc.value)


def test_parse_candidates_names_offending_row():
    rows = [{"name": "A", "quantity": 1, "price": 1}, {"name": "", "quantity": 1, "price": 1}]
    with pytest.raises(ValidationError, match="row 1"):
        parse_scan_candidates(rows)


def test_parse_candidates_rejects_non_list():
    with pytest.raises(ValidationError):
        parse_scan_candidates({"name": "A"})
    with pytest.raises(ValidationError):
        parse_scan_candidates([])


# ----------------------------------------------------------------------
# matching
# ----------------------------------------------------------------------

CATALOG = [
    SimpleNamespace(id=1, sku="PEN-B", name="Blue Pen"),
    SimpleNamespace(id=2, sku="NB-1", name="Notebook"),
]


def test_match_prefers_sku_over_name():
    c = ScanCandidate(name="Notebook", quantity=1, unit_price_cents=100, sku="PEN-B")
    assert match_candidate(c, CATALOG) == Matched(candidate=c, product_id=1)


def test_match_by_trimmed_case_insensitive_name():
    c = ScanCandidate(name="  notebook", quantity=1, unit_price_cents=100)
    assert match_candidate(c, CATALOG) == Matched(candidate=c, product_id=2)


def test_unknown_sku_falls_back_to_name():
    c = ScanCandidate(name="blue pen", quantity=1, unit_price_cents=100, sku="NEW-SKU")
    assert match_candidate(c, CATALOG) == Matched(candidate=c, product_id=1)


def test_unmatched():
    c = ScanCandidate(name="Stapler", quantity=1, unit_price_cents=100)
    results = match_candidates([c], CATALOG)
    assert results == [Unmatched(candidate=c)]


# ----------------------------------------------------------------------
# restock_from_scan
# ----------------------------------------------------------------------

def test_restock_from_scan_restocks_and_creates(db_session, engine, make_product):
    pen = make_product(sku="PEN-B", name="Blue Pen", stock=5)

    results = engine.restock_from_scan([
        {"name": "blue pen", "quantity": 10, "price": "0.80"},
        {"name": "Stapler", "quantity": 3, "price": "4.50"},
    ])

    assert [r.created for r in results] == [False, True]
    assert isinstance(results[0].match, Matched)
    assert isinstance(results[1].match, Unmatched)

    db_session.expire_all()
    assert pen.stock == 15
    restock = latest_movement(pen.id)
    assert (restock.kind, restock.amount) == (MOVEMENT_RESTOCK, 10)

    stapler = db_session.query(Product).filter_by(name="Stapler").one()
    assert stapler.stock == 3
    assert stapler.category == DEFAULT_CATEGORY
    assert stapler.margin_percent == 20
    assert stapler.min_stock == 5
    assert stapler.unit_cost_cents == 450
    assert stapler.description == "Imported via scan"
    assert stapler.sku.startswith("AUTO-")
    initial = movements_for(stapler.id)
    assert [(m.kind, m.amount) for m in initial] == [(MOVEMENT_INITIAL, 3)]


def test_restock_from_scan_keeps_scanned_sku(db_session, engine):
    results = engine.restock_from_scan([{"name": "Glue", "sku": "GLU-7", "quantity": 2, "price": 1}])
    assert results[0].product.sku == "GLU-7"


def test_repeated_unmatched_row_restocks_the_new_product(db_session, engine):
    results = engine.restock_from_scan([
        {"name": "Tape", "quantity": 2, "price": 1},
        {"name": "TAPE", "quantity": 3, "price": 1},
    ])

    assert [r.created for r in results] == [True, False]
    tape = db_session.query(Product).filter_by(name="Tape").one()
    assert tape.stock == 5
    assert db_session.query(Product).count() == 1


def test_restock_from_scan_invalid_row_applies_nothing(db_session, engine, make_product):
    pen = make_product(name="Blue Pen", stock=5)

    with pytest.raises(ValidationError):
        engine.restock_from_scan([
            {"name": "Blue Pen", "quantity": 1, "price": 1},
            {"name": "Broken", "quantity": -1, "price": 1},
        ])

    db_session.expire_all()
    assert pen.stock == 5
    assert db_session.query(Product).count() == 1


@pytest.mark.parametrize("row, message", [
    ({"name": "x" * 256, "quantity": 1, "price": 1}, "row 1: name exceeds max length 255"),
    ({"name": "Long Code", "sku": "S" * 65, "quantity": 1, "price": 1}, "row 1: sku exceeds max length 64"),
])
def test_restock_from_scan_rejects_oversize_catalog_fields(db_session, engine, make_product, row, message):
    pen = make_product(name="Blue Pen", stock=5)

    with pytest.raises(ValidationError, match=message):
        engine.restock_from_scan([{"name": "Blue Pen", "quantity": 1, "price": 1}, row])

    db_session.expire_all()
    assert pen.stock == 5
    assert db_session.query(Product).count() == 1
