# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/stockroom/routes/inventory.py
"""
Stock movement routes: restock, manual adjustment, scan restock, and the
flattened movement view across every product.
"""
from flask import Blueprint, request

from ..errors import ValidationError
from ..services.ledger_service import latest_movement
from ..services.query_service import query_stock_movements
from ..services.transaction_engine import get_engine
from .common import json_payload, run_read, run_write

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _require(data: dict, *fields: str) -> None:
    missing = [f for f in fields if data.get(f) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


@inventory_bp.post("/restock")
def restock_route():
    """Body: {"product_id", "amount", "reason"?}"""
    def _op():
        data = json_payload()
        _require(data, "product_id", "amount")
        product = get_engine().restock(data["product_id"], data["amount"], reason=data.get("reason"))
        return {"product": product.to_dict()}

    return run_write(_op, action="restock")


@inventory_bp.post("/adjust")
def adjust_route():
    """
    Body: {"product_id", "amount", "reason"?}

    amount is signed. A decrease larger than stock is clamped at zero.
    """
    def _op():
        data = json_payload()
        _require(data, "product_id", "amount")
        product = get_engine().adjust_stock(data["product_id"], data["amount"], data.get("reason"))
        return {"product": product.to_dict(), "movement": latest_movement(product.id).to_dict()}

    return run_write(_op, action="adjust stock")


@inventory_bp.post("/scan-restock")
def scan_restock_route():
    """
    Body: {"candidates": [{"name", "quantity", "unit_price" | "unit_price_cents", "sku"?}, ...]}

    Candidates are the output of an external document-extraction step.
    """
    def _op():
        data = json_payload()
        candidates = data.get("candidates")
        if not isinstance(candidates, list):
            raise ValidationError("candidates must be a list")
        results = get_engine().restock_from_scan(candidates)
        return {
            "results": [
                {
                    "name": r.match.candidate.name,
                    "quantity": r.match.candidate.quantity,
                    "matched": not r.created,
                    "created": r.created,
                    "product": r.product.to_dict(),
                }
                for r in results
            ],
            "created_count": sum(1 for r in results if r.created),
            "restocked_count": sum(1 for r in results if not r.created),
        }

    return run_write(_op, action="restock from scan")


@inventory_bp.get("/movements")
def movements_route():
    """
    Query params:
    - q: matched against product name or movement kind
    - include_orphans: "true" includes ledgers of deleted products
    """
    def _op():
        include_orphans = request.args.get("include_orphans", "false").lower() == "true"
        rows = query_stock_movements(request.args.get("q"), include_orphans=include_orphans)
        return {
            "movements": [
                {**movement.to_dict(), "product_name": name}
                for name, movement in rows
            ]
        }

    return run_read(_op, action="list stock movements")
