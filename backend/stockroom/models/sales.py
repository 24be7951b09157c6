from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

PAYMENT_CASH = "CASH"
PAYMENT_CARD = "CARD"
PAYMENT_TRANSFER = "TRANSFER"

PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CARD, PAYMENT_TRANSFER)

RETURN_STATUS_NONE = "NONE"
RETURN_STATUS_PARTIAL = "PARTIAL"
RETURN_STATUS_FULL = "FULL"


class Sale(db.Model):
    """
    Completed sale document.

    WHY: A sale is written once, at completion, together with the SALE stock
    movements it causes. Afterwards only its items' returned_quantity changes.

    Customer fields are a snapshot taken at sale time; editing the customer
    later does not rewrite history. customer_id is informational only.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_sales_document_number"),
        db.Index("ix_sales_occurred_at", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "S-000123"), assigned after insert
    document_number = db.Column(db.String(32), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    customer_id = db.Column(db.Integer, nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_address = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, index=True)
    processed_by = db.Column(db.String(128), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.line_number",
        cascade="all, delete-orphan",
        lazy="select",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def item_for_product(self, product_id: int) -> "SaleItem | None":
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    @property
    def returned_value_cents(self) -> int:
        return sum(item.unit_price_cents * item.returned_quantity for item in self.items)

    def __repr__(self) -> str:
        return f"<Sale id={self.id} number={self.document_number!r} total_cents={self.total_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "occurred_at": to_utc_z(self.occurred_at),
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_address": self.customer_address,
            "customer_phone": self.customer_phone,
            "items": [item.to_dict() for item in self.items],
            "subtotal_cents": self.subtotal_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "returned_value_cents": self.returned_value_cents,
            "payment_method": self.payment_method,
            "processed_by": self.processed_by,
            "version_id": self.version_id,
        }


class SaleItem(db.Model):
    """
    Individual line on a sale.

    product_id is a plain reference: the product may be re-priced or deleted
    later without touching this row. One line per product per sale.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "product_id", name="uq_sale_items_sale_product"),
        db.CheckConstraint(
            "returned_quantity >= 0 AND returned_quantity <= quantity",
            name="ck_sale_items_returned_bounds",
        ),
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    returned_quantity = db.Column(db.Integer, nullable=False, default=0)

    sale = db.relationship("Sale", back_populates="items")

    @property
    def returnable_quantity(self) -> int:
        return self.quantity - (self.returned_quantity or 0)

    @property
    def return_status(self) -> str:
        returned = self.returned_quantity or 0
        if returned == 0:
            return RETURN_STATUS_NONE
        if returned < self.quantity:
            return RETURN_STATUS_PARTIAL
        return RETURN_STATUS_FULL

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "returned_quantity": self.returned_quantity or 0,
            "returnable_quantity": self.returnable_quantity,
            "return_status": self.return_status,
        }
