# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/stockroom/routes/sales.py
"""Sales and return routes"""

from flask import Blueprint, current_app, request

from ..errors import SaleNotFound, ValidationError
from ..services.query_service import SALE_SORT_FIELDS, DEFAULT_SALE_SORT, parse_sort_param, query_sales
from ..services.sales_service import SaleStore
from ..services.transaction_engine import get_engine
from .common import json_payload, run_read, run_write


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
def list_sales_route():
    """
    Query params:
    - q: matched against document number, customer name, processed_by
    - payment_method: CASH / CARD / TRANSFER; "All" or empty means any
    - sort: "field:dir,..." (default newest first)
    """
    def _op():
        keys = parse_sort_param(request.args.get("sort"), SALE_SORT_FIELDS, DEFAULT_SALE_SORT)
        sales = query_sales(request.args.get("q"), request.args.get("payment_method"), keys)
        return {"sales": [s.to_dict() for s in sales]}

    return run_read(_op, action="list sales")


@sales_bp.post("")
def complete_sale_route():
    """
    Complete a sale in one step.

    Body:
    {
      "items": [{"product_id", "quantity", "unit_price_cents"?}, ...],
      "customer": {"name", "address"?, "phone"?}?,
      "customer_id": int?,
      "payment_method": "CASH" | "CARD" | "TRANSFER",
      "processed_by": str?
    }
    """
    def _op():
        data = json_payload()
        items = data.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        sale = get_engine().complete_sale(
            items,
            customer=data.get("customer"),
            payment_method=data.get("payment_method"),
            processed_by=data.get("processed_by"),
            customer_id=data.get("customer_id"),
        )
        current_app.logger.info("Sale %s completed, total %s cents", sale.document_number, sale.total_cents)
        return {"sale": sale.to_dict()}

    return run_write(_op, action="complete sale", success_status=201)


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    def _op():
        sale = SaleStore().get(sale_id)
        if sale is None:
            raise SaleNotFound(f"Sale {sale_id} not found")
        return {"sale": sale.to_dict()}

    return run_read(_op, action="load sale")


@sales_bp.post("/<int:sale_id>/returns")
def process_return_route(sale_id: int):
    """
    Body: {"returns": [{"product_id", "quantity"}, ...]}

    All lines are validated before any is applied.
    """
    def _op():
        data = json_payload()
        returns = data.get("returns")
        if not isinstance(returns, list):
            raise ValidationError("returns must be a list")
        sale = get_engine().process_return(sale_id, returns)
        return {"sale": sale.to_dict()}

    return run_write(_op, action="process return")
