# Overview: Read-only reporting summaries over the catalog and sales history.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import SaleItem
from ..time_utils import business_day, to_utc_z, utcnow
from .inventory_service import InventoryStore
from .query_service import DEFAULT_PRODUCT_SORT, low_stock, sort_records
from .sales_service import SaleStore


class ReportError(Exception):
    """Raised when report parameters are unusable."""
    pass


MAX_REPORT_DAYS = 366


def stock_value_cents(products) -> int:
    """Total stock value at current sell prices."""
    return sum(p.sell_price_cents * p.stock for p in products)


def _start_of_day(dt: datetime) -> datetime:
    return datetime.combine(business_day(dt), datetime.min.time())


def revenue_by_day(*, days: int = 7, now: datetime | None = None, sales: SaleStore | None = None) -> list[dict]:
    """
    Gross and net revenue per day for the last `days` days including today,
    oldest first. Days with no sales are present with zeros.
    """
    if days < 1 or days > MAX_REPORT_DAYS:
        raise ReportError(f"days must be between 1 and {MAX_REPORT_DAYS}")
    sales = sales or SaleStore()
    now = now or utcnow()

    first_day = _start_of_day(now) - timedelta(days=days - 1)
    end = _start_of_day(now) + timedelta(days=1)

    buckets = {}
    for offset in range(days):
        day = business_day(first_day + timedelta(days=offset))
        buckets[day] = {"day": day.isoformat(), "sales_count": 0, "gross_cents": 0, "returned_cents": 0}

    for sale in sales.between(first_day, end):
        bucket = buckets[business_day(sale.occurred_at)]
        bucket["sales_count"] += 1
        bucket["gross_cents"] += sale.total_cents
        bucket["returned_cents"] += sale.returned_value_cents

    rows = list(buckets.values())
    for row in rows:
        row["net_cents"] = row["gross_cents"] - row["returned_cents"]
    return rows


def top_products(*, limit: int = 5) -> list[dict]:
    """Best sellers by net units (sold minus returned)."""
    if limit < 1:
        raise ReportError("limit must be >= 1")
    net_units = func.sum(SaleItem.quantity - SaleItem.returned_quantity)
    rows = (
        db.session.query(
            SaleItem.product_id,
            func.max(SaleItem.product_name).label("product_name"),
            net_units.label("net_units"),
            func.sum(SaleItem.line_total_cents).label("gross_cents"),
        )
        .group_by(SaleItem.product_id)
        .having(net_units > 0)
        .order_by(net_units.desc(), SaleItem.product_id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "product_id": row.product_id,
            "product_name": row.product_name,
            "net_units": int(row.net_units or 0),
            "gross_cents": int(row.gross_cents or 0),
        }
        for row in rows
    ]


def summary(
    *,
    days: int = 7,
    low_stock_limit: int = 50,
    top_limit: int = 5,
    now: datetime | None = None,
    inventory: InventoryStore | None = None,
    sales: SaleStore | None = None,
) -> dict:
    inventory = inventory or InventoryStore()
    now = now or utcnow()

    products = inventory.all()
    low = sort_records(low_stock(products), DEFAULT_PRODUCT_SORT)
    daily = revenue_by_day(days=days, now=now, sales=sales)
    today = daily[-1]

    return {
        "generated_at": to_utc_z(now),
        "product_count": len(products),
        "total_units": sum(p.stock for p in products),
        "stock_value_cents": stock_value_cents(products),
        "low_stock_count": len(low),
        "low_stock": [p.to_dict() for p in low[:low_stock_limit]],
        "today_revenue_cents": today["gross_cents"],
        "today_net_revenue_cents": today["net_cents"],
        "today_sales_count": today["sales_count"],
        "revenue_by_day": daily,
        "top_products": top_products(limit=top_limit),
    }
