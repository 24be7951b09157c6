# Overview: InventoryStore, the authoritative product catalog and stock holder.

from __future__ import annotations

from sqlalchemy import func, select

from ..extensions import db
from ..models import Product, StockMovement
from .concurrency import lock_for_update


class InventoryStore:
    """
    Product records keyed by id.

    Reads are free for anyone. Writes (add/delete) are only called from the
    TransactionEngine, inside its unit of work; stock balances themselves are
    only changed through the ledger service.
    """

    def get(self, product_id: int, *, lock: bool = False) -> Product | None:
        query = db.session.query(Product).filter_by(id=product_id)
        if lock:
            query = lock_for_update(query)
        return query.first()

    def get_many(self, product_ids, *, lock: bool = False) -> dict[int, Product]:
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        query = db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id.asc())
        if lock:
            query = lock_for_update(query)
        return {p.id: p for p in query.all()}

    def by_sku(self, sku: str) -> Product | None:
        return db.session.query(Product).filter_by(sku=sku).first()

    def sku_taken(self, sku: str, *, exclude_id: int | None = None) -> bool:
        query = db.session.query(Product.id).filter(Product.sku == sku)
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        return query.first() is not None

    def all(self) -> list[Product]:
        return db.session.query(Product).order_by(Product.id.asc()).all()

    def categories(self) -> list[str]:
        rows = db.session.query(Product.category).distinct().all()
        return sorted({r[0] for r in rows}, key=str.casefold)

    def add(self, product: Product) -> Product:
        db.session.add(product)
        db.session.flush()
        return product

    def delete(self, product: Product, *, retain_ledger: bool = True) -> None:
        if not retain_ledger:
            db.session.query(StockMovement).filter(
                StockMovement.product_id == product.id
            ).delete(synchronize_session=False)
        db.session.delete(product)
        db.session.flush()

    def all_movements(self, *, include_orphans: bool = False) -> list[StockMovement]:
        query = db.session.query(StockMovement)
        if not include_orphans:
            query = query.filter(StockMovement.product_id.in_(select(Product.id)))
        return query.order_by(
            StockMovement.occurred_at.desc(),
            StockMovement.product_id.asc(),
            StockMovement.sequence.desc(),
        ).all()

    def orphaned_product_ids(self) -> list[int]:
        rows = (
            db.session.query(StockMovement.product_id)
            .filter(~StockMovement.product_id.in_(select(Product.id)))
            .distinct()
            .all()
        )
        return sorted(r[0] for r in rows)

    def total_units(self) -> int:
        return int(db.session.query(func.coalesce(func.sum(Product.stock), 0)).scalar() or 0)
