from __future__ import annotations

from ..extensions import db
from ..money import derive_sell_price_cents
from ..time_utils import to_utc_z

MOVEMENT_INITIAL = "INITIAL"
MOVEMENT_RESTOCK = "RESTOCK"
MOVEMENT_SALE = "SALE"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"

MOVEMENT_KINDS = (MOVEMENT_INITIAL, MOVEMENT_RESTOCK, MOVEMENT_SALE, MOVEMENT_ADJUSTMENT)

DEFAULT_CATEGORY = "General"


class Product(db.Model):
    """
    Product master data plus its current stock balance.

    STOCK DESIGN DECISION:
    Product.stock is the stored running balance. It is only ever changed by
    the stock ledger, which writes a StockMovement in the same unit of work,
    so the newest movement's balance_after always equals Product.stock.

    The sell price is derived from unit cost and margin and never stored.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_category_name", "category", "name"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=False, default=DEFAULT_CATEGORY)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    margin_percent = db.Column(db.Float, nullable=False, default=0.0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # Movements keep product_id after the product is gone, so no FK here.
    movements = db.relationship(
        "StockMovement",
        primaryjoin="Product.id == foreign(StockMovement.product_id)",
        order_by=lambda: [StockMovement.occurred_at.desc(), StockMovement.sequence.desc()],
        viewonly=True,
        lazy="select",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def sell_price_cents(self) -> int:
        return derive_sell_price_cents(self.unit_cost_cents or 0, self.margin_percent or 0.0)

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock}>"

    def to_dict(self, *, include_movements: bool = False) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "unit_cost_cents": self.unit_cost_cents,
            "margin_percent": self.margin_percent,
            "sell_price_cents": self.sell_price_cents,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "is_low_stock": self.is_low_stock,
            "last_restocked_at": to_utc_z(self.last_restocked_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_movements:
            data["movements"] = [m.to_dict() for m in self.movements]
        return data


class StockMovement(db.Model):
    """
    One immutable ledger entry: a signed quantity change and the balance it
    produced. Rows are inserted, never updated or deleted by the ledger.

    sequence is per product and strictly increasing; together with
    occurred_at it gives the explicit newest-first order.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("product_id", "sequence", name="uq_movements_product_sequence"),
        db.Index("ix_movements_product_occurred", "product_id", "occurred_at"),
        db.CheckConstraint("balance_after >= 0", name="ck_movements_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, nullable=False, index=True)
    # Snapshot so orphaned ledgers stay readable
    product_name = db.Column(db.String(255), nullable=False)

    sequence = db.Column(db.Integer, nullable=False)
    kind = db.Column(db.String(16), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    # Sale document number for SALE movements and return restocks
    reference = db.Column(db.String(64), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return (
            f"<StockMovement product_id={self.product_id} seq={self.sequence} "
            f"{self.kind} {self.amount:+d} -> {self.balance_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sequence": self.sequence,
            "kind": self.kind,
            "amount": self.amount,
            "balance_after": self.balance_after,
            "reason": self.reason,
            "reference": self.reference,
            "occurred_at": to_utc_z(self.occurred_at),
        }
