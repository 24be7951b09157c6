# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/stockroom/routes/products.py
"""
Product catalog routes.

Reads go straight to the query engine. Every write goes through the
TransactionEngine so stock changes always land in the ledger.
"""
from flask import Blueprint, current_app, request

from ..errors import ProductNotFound, ValidationError
from ..services.inventory_service import InventoryStore
from ..services.ledger_service import movements_for
from ..services.query_service import (
    DEFAULT_PRODUCT_SORT,
    PRODUCT_SORT_FIELDS,
    low_stock,
    parse_sort_param,
    query_products,
)
from ..services.transaction_engine import get_engine
from .common import json_payload, run_read, run_write

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    Filtered, sorted catalog.

    Query params:
    - q: text matched against name, SKU and description
    - category: exact category; "All" or empty means every category
    - sort: "field:dir,field:dir" (default "category:asc,name:asc")
    - low_stock: "true" keeps only products at or below min_stock
    """
    def _op():
        keys = parse_sort_param(request.args.get("sort"), PRODUCT_SORT_FIELDS, DEFAULT_PRODUCT_SORT)
        products = query_products(
            request.args.get("q"),
            request.args.get("category"),
            keys,
        )
        if request.args.get("low_stock", "false").lower() == "true":
            products = low_stock(products)
        return {
            "products": [p.to_dict() for p in products],
            "categories": InventoryStore().categories(),
            "sort": [k.to_dict() for k in keys],
        }

    return run_read(_op, action="list products")


@products_bp.post("")
def create_product_route():
    """Create a product; "stock" in the payload becomes its INITIAL movement."""
    def _op():
        product = get_engine().create_product(json_payload())
        current_app.logger.info("Created product %s (%s)", product.id, product.sku)
        return {"product": product.to_dict()}

    return run_write(_op, action="create product", success_status=201)


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    def _op():
        product = InventoryStore().get(product_id)
        if product is None:
            raise ProductNotFound(f"Product {product_id} not found")
        return {"product": product.to_dict(include_movements=True)}

    return run_read(_op, action="load product")


@products_bp.patch("/<int:product_id>")
def update_product_route(product_id: int):
    """Catalog edit. A new absolute "stock" is recorded as an ADJUSTMENT."""
    def _op():
        product = get_engine().update_product(product_id, json_payload())
        return {"product": product.to_dict()}

    return run_write(_op, action="update product")


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    def _op():
        get_engine().delete_product(product_id)
        return {"ok": True}

    return run_write(_op, action="delete product")


@products_bp.post("/bulk-update")
def bulk_update_route():
    """
    Body: {"product_ids": [...], "patch": {category?, margin_percent?, min_stock?, unit_cost_cents?}}
    """
    def _op():
        data = json_payload()
        product_ids = data.get("product_ids")
        if not isinstance(product_ids, list):
            raise ValidationError("product_ids must be a list")
        patch = data.get("patch")
        if not isinstance(patch, dict):
            raise ValidationError("patch must be an object")
        products = get_engine().bulk_update_products(product_ids, patch)
        return {"products": [p.to_dict() for p in products]}

    return run_write(_op, action="bulk update products")


@products_bp.get("/<int:product_id>/movements")
def product_movements_route(product_id: int):
    """
    Ledger for one product, newest first. Still answers for a deleted
    product while its orphaned ledger is retained.
    """
    def _op():
        product = InventoryStore().get(product_id)
        movements = movements_for(product_id)
        if product is None and not movements:
            raise ProductNotFound(f"Product {product_id} not found")
        return {
            "product_id": product_id,
            "product_name": product.name if product else movements[0].product_name,
            "orphaned": product is None,
            "stock": product.stock if product else None,
            "movements": [m.to_dict() for m in movements],
        }

    return run_read(_op, action="load product movements")
