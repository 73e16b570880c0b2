from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, case

from ..extensions import db
from ..models import Transaction, TransactionItem, Product, Category
from ..models.sales import PAYMENT_METHOD_CASH
from ..validation import ValidationError
from kasir.time_utils import parse_date_range, utcnow, to_utc_z
from .payment_state import PaymentStatus
from .inventory_service import low_stock_products


REPORT_TYPES = ("overview", "sales", "products", "inventory")

PAID = PaymentStatus.PAID.value


class ReportError(ValidationError):
    """Raised when report parameters are invalid."""
    pass


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        return parse_date_range(start, end)
    except ValueError:
        raise ReportError("start_date/end_date must be ISO-8601 dates")


def _paid_transactions(start_dt: datetime | None, end_dt: datetime | None):
    filters = [Transaction.payment_status == PAID]
    if start_dt:
        filters.append(Transaction.created_at >= start_dt)
    if end_dt:
        filters.append(Transaction.created_at <= end_dt)
    return filters


def build_report(
    report_type: str | None,
    *,
    start: str | None = None,
    end: str | None = None,
    category_id: int | None = None,
) -> dict:
    report_type = (report_type or "overview").strip().lower()
    if report_type not in REPORT_TYPES:
        raise ReportError(f"type must be one of {', '.join(REPORT_TYPES)}")

    start_dt, end_dt = _parse_range(start, end)

    if report_type == "overview":
        return {"overview": overview_report(start_dt, end_dt)}
    if report_type == "sales":
        return sales_report(start_dt, end_dt)
    if report_type == "products":
        return {"top_products": top_products_report(start_dt, end_dt)}
    return inventory_report(category_id)


def overview_report(start_dt: datetime | None, end_dt: datetime | None) -> dict:
    filters = _paid_transactions(start_dt, end_dt)
    revenue, count = db.session.query(
        func.coalesce(func.sum(Transaction.final_amount), 0),
        func.count(Transaction.id),
    ).filter(*filters).one()

    total_products = db.session.query(Product).filter(Product.is_active.is_(True)).count()
    low_stock_count = db.session.query(Product).filter(
        Product.is_active.is_(True),
        Product.stock <= Product.min_stock,
    ).count()

    revenue = int(revenue or 0)
    count = int(count or 0)
    return {
        "total_revenue": revenue,
        "total_transactions": count,
        "total_products": total_products,
        "low_stock_count": low_stock_count,
        "average_order_value": round(revenue / count, 2) if count else 0,
    }


def sales_report(start_dt: datetime | None, end_dt: datetime | None) -> dict:
    filters = _paid_transactions(start_dt, end_dt)

    subtotal, revenue, count = db.session.query(
        func.coalesce(func.sum(Transaction.total_amount), 0),
        func.coalesce(func.sum(Transaction.final_amount), 0),
        func.count(Transaction.id),
    ).filter(*filters).one()

    by_method = (
        db.session.query(
            Transaction.payment_method,
            func.coalesce(func.sum(Transaction.final_amount), 0),
            func.count(Transaction.id),
        )
        .filter(*filters)
        .group_by(Transaction.payment_method)
        .order_by(Transaction.payment_method.asc())
        .all()
    )

    day = func.date(Transaction.created_at)
    trend = (
        db.session.query(
            day.label("day"),
            func.coalesce(func.sum(Transaction.final_amount), 0),
            func.count(Transaction.id),
            func.sum(case((Transaction.payment_method == PAYMENT_METHOD_CASH, 1), else_=0)),
        )
        .filter(*filters)
        .group_by(day)
        .order_by(day.asc())
        .all()
    )

    return {
        "summary": {
            "total_amount": int(subtotal or 0),
            "total_revenue": int(revenue or 0),
            "total_transactions": int(count or 0),
        },
        "payment_methods": [
            {"payment_method": method, "revenue": int(total or 0), "transactions": int(n)}
            for method, total, n in by_method
        ],
        "revenue_trends": [
            {
                "date": str(d),
                "revenue": int(total or 0),
                "transactions": int(n),
                "cash_transactions": int(cash or 0),
                "digital_transactions": int(n) - int(cash or 0),
            }
            for d, total, n, cash in trend
        ],
    }


def top_products_report(start_dt: datetime | None, end_dt: datetime | None, limit: int = 10) -> list[dict]:
    revenue = func.sum(TransactionItem.total_price)
    rows = (
        db.session.query(
            Product.id,
            Product.name,
            Product.sku,
            Category.name,
            func.sum(TransactionItem.quantity),
            revenue,
            func.count(TransactionItem.id),
        )
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .join(Product, Product.id == TransactionItem.product_id)
        .outerjoin(Category, Category.id == Product.category_id)
        .filter(*_paid_transactions(start_dt, end_dt))
        .group_by(Product.id, Product.name, Product.sku, Category.name)
        .order_by(revenue.desc(), Product.id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "product_id": pid,
            "name": name,
            "sku": sku,
            "category": category,
            "quantity": int(qty or 0),
            "revenue": int(rev or 0),
            "orders": int(orders or 0),
        }
        for pid, name, sku, category, qty, rev, orders in rows
    ]


def inventory_report(category_id: int | None = None) -> dict:
    query = db.session.query(
        func.coalesce(func.sum(Product.stock), 0),
        func.count(Product.id),
    ).filter(Product.is_active.is_(True))
    if category_id:
        query = query.filter(Product.category_id == category_id)
    total_stock, product_count = query.one()

    return {
        "inventory_stats": {
            "total_stock": int(total_stock or 0),
            "product_count": int(product_count or 0),
        },
        "low_stock_products": [p.to_dict() for p in low_stock_products(category_id)],
    }


def dashboard_stats() -> dict:
    revenue = db.session.query(func.coalesce(func.sum(Transaction.final_amount), 0)).filter(
        Transaction.payment_status == PAID
    ).scalar()
    return {
        "total_products": db.session.query(Product).filter(Product.is_active.is_(True)).count(),
        "total_transactions": db.session.query(Transaction).count(),
        "total_revenue": int(revenue or 0),
        "low_stock_products": db.session.query(Product).filter(
            Product.is_active.is_(True),
            Product.stock <= Product.min_stock,
        ).count(),
    }


def _month_start(dt: datetime, months_back: int = 0) -> datetime:
    year, month = dt.year, dt.month - months_back
    while month <= 0:
        month += 12
        year -= 1
    return datetime(year, month, 1)


def _paid_revenue(start_dt: datetime | None = None, end_dt: datetime | None = None) -> int:
    query = db.session.query(func.coalesce(func.sum(Transaction.final_amount), 0)).filter(
        Transaction.payment_status == PAID
    )
    if start_dt:
        query = query.filter(Transaction.created_at >= start_dt)
    if end_dt:
        query = query.filter(Transaction.created_at < end_dt)
    return int(query.scalar() or 0)


def sales_summary(now: datetime | None = None) -> dict:
    """Total PAID revenue, this month's revenue, and change versus last month (%)."""
    now = now or utcnow()
    this_month = _month_start(now)
    last_month = _month_start(now, 1)

    total = _paid_revenue()
    monthly = _paid_revenue(this_month)
    previous = _paid_revenue(last_month, this_month)

    if previous > 0:
        change = (monthly - previous) / previous * 100
    else:
        change = 100 if monthly > 0 else 0

    return {
        "total_revenue": total,
        "monthly_revenue": monthly,
        "previous_month_revenue": previous,
        "percentage_change": round(change, 2),
        "last_updated": to_utc_z(utcnow()),
    }
