"""
SaleStore - authoritative sale records.

WHY: Sales are written once by the TransactionEngine at completion. The only
later mutation is SaleItem.returned_quantity, done by return processing.
Nothing in here changes stock.
"""

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Sale
from .concurrency import lock_for_update

SALE_NUMBER_PREFIX = "S"


def format_document_number(sale_id: int) -> str:
    return f"{SALE_NUMBER_PREFIX}-{sale_id:06d}"


class SaleStore:

    def get(self, sale_id: int, *, lock: bool = False) -> Sale | None:
        query = db.session.query(Sale).filter_by(id=sale_id)
        if lock:
            query = lock_for_update(query)
        return query.first()

    def add(self, sale: Sale) -> Sale:
        """Insert and assign the document number from the generated id."""
        db.session.add(sale)
        db.session.flush()
        sale.document_number = format_document_number(sale.id)
        db.session.flush()
        return sale

    def all(self) -> list[Sale]:
        return (
            db.session.query(Sale)
            .order_by(Sale.occurred_at.desc(), Sale.id.desc())
            .all()
        )

    def between(self, start: datetime, end: datetime) -> list[Sale]:
        """Sales with start <= occurred_at < end, newest first."""
        return (
            db.session.query(Sale)
            .filter(Sale.occurred_at >= start, Sale.occurred_at < end)
            .order_by(Sale.occurred_at.desc(), Sale.id.desc())
            .all()
        )
