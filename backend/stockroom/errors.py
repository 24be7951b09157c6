"""
Typed failures raised by the stock core.

Every failure carries a stable ``code`` (used in API error bodies) and an
optional ``details`` dict. Validation failures are raised before any
mutation starts; InvariantViolation is the only kind detected mid-operation
and always aborts the unit of work.
"""
from __future__ import annotations


class StockError(Exception):
    """Base class for all stock core failures."""

    code = "STOCK_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": str(self), "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StockError, ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"


class InvalidQuantity(ValidationError):
    """Non-positive restock amount, zero adjustment, malformed line quantity."""

    code = "INVALID_QUANTITY"


class ConflictError(StockError, ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""

    code = "CONFLICT"
    http_status = 409


class ProductNotFound(StockError):
    code = "PRODUCT_NOT_FOUND"
    http_status = 404


class SaleNotFound(StockError):
    code = "SALE_NOT_FOUND"
    http_status = 404


class ItemNotFound(StockError):
    code = "ITEM_NOT_FOUND"
    http_status = 404


class InsufficientStock(StockError):
    """A decrement would drive a product's stock below zero."""

    code = "INSUFFICIENT_STOCK"
    http_status = 409


class ExcessiveReturn(StockError):
    """Requested return exceeds the item's returnable quantity."""

    code = "EXCESSIVE_RETURN"
    http_status = 409


class LockTimeout(StockError):
    code = "LOCK_TIMEOUT"
    http_status = 503


class InvariantViolation(StockError):
    """Ledger or return bookkeeping disagrees with itself. Never expected."""

    code = "INVARIANT_VIOLATION"
    http_status = 500


class CustomerNotFound(StockError):
    code = "CUSTOMER_NOT_FOUND"
    http_status = 404
