# Overview: Flask API routes for customers; parses input and returns JSON responses.

from flask import Blueprint, request

from ..services.query_service import query_customers
from ..services.transaction_engine import get_engine
from .common import json_payload, run_read, run_write

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
def list_customers_route():
    """Query params: q (matched against name or phone)."""
    def _op():
        return {"customers": [c.to_dict() for c in query_customers(request.args.get("q"))]}

    return run_read(_op, action="list customers")


@customers_bp.post("")
def save_customer_route():
    """
    Create or update a customer. Body carries "id" to update.

    Past sales keep the customer snapshot they were made with.
    """
    def _op():
        data = dict(json_payload())
        customer_id = data.pop("id", None)
        customer = get_engine().save_customer(data, customer_id)
        return {"customer": customer.to_dict()}

    return run_write(_op, action="save customer")
