"""
Inventory ledger.

Invariants:
- Product.stock is only written here, and every write appends exactly one
  InventoryLog row in the same database transaction.
- Writes are conditional updates evaluated by the database, never a Python
  read-modify-write:
    delta changes:  stock = stock + :delta WHERE id = :id [AND stock >= -:delta]
    absolute sets:  stock = :new WHERE id = :id AND stock = :observed
- Functions in the "primitives" section flush but never commit; the caller
  owns the transaction boundary.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_, update

from ..extensions import db
from ..models import Product, InventoryLog
from ..models.inventory import (
    LOG_RESTOCK,
    LOG_ADJUSTMENT,
    VALID_LOG_TYPES,
)
from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    coerce_int,
    paginate,
)
from kasir.time_utils import utcnow, parse_date_range
from .concurrency import compare_and_swap
from . import notification_service
from .notification_service import NotificationEvent


class InsufficientStockError(ConflictError):
    """Raised when a decrement would take stock below zero."""

    def __init__(self, product_id: int, requested: int, available: int | None, name: str | None = None):
        label = name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}",
            details={"product_id": product_id, "requested": requested, "available": available},
        )


@dataclass
class StockChange:
    product: Product
    previous_stock: int
    new_stock: int
    log: InventoryLog

    @property
    def delta(self) -> int:
        return self.new_stock - self.previous_stock

    @property
    def is_low_stock(self) -> bool:
        return self.new_stock <= self.product.min_stock


# =============================================================================
# PRIMITIVES (caller commits)
# =============================================================================

def _append_log(product_id: int, log_type: str, previous: int, new: int, reason: str | None, actor_id: int) -> InventoryLog:
    log = InventoryLog(
        product_id=product_id,
        type=log_type,
        quantity=abs(new - previous),
        previous_stock=previous,
        new_stock=new,
        reason=reason,
        created_by=actor_id,
        created_at=utcnow(),
    )
    db.session.add(log)
    db.session.flush()
    return log


def apply_stock_change(
    *,
    product_id: int,
    delta: int,
    log_type: str,
    actor_id: int,
    reason: str | None = None,
    enforce_floor: bool = True,
) -> StockChange:
    """
    Atomically add `delta` to a product's stock and append the ledger entry.

    With enforce_floor the update only matches while stock + delta >= 0;
    otherwise InsufficientStockError is raised and nothing is written.
    """
    if log_type not in VALID_LOG_TYPES:
        raise ValidationError(f"Unknown inventory log type: {log_type}")

    values = {"stock": Product.stock + delta, "updated_at": utcnow()}
    if not _conditional_stock_update(product_id, delta, values, enforce_floor):
        product = db.session.get(Product, product_id, populate_existing=True)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        raise InsufficientStockError(product_id, -delta, product.stock, product.name)

    product = db.session.get(Product, product_id, populate_existing=True)
    new_stock = product.stock
    previous_stock = new_stock - delta

    if new_stock < 0:
        current_app.logger.warning(
            "Stock for product %s went negative (%s) after %s of %s",
            product_id, new_stock, log_type, delta,
        )

    log = _append_log(product_id, log_type, previous_stock, new_stock, reason, actor_id)
    return StockChange(product=product, previous_stock=previous_stock, new_stock=new_stock, log=log)


def _conditional_stock_update(product_id: int, delta: int, values: dict, enforce_floor: bool) -> bool:
    stmt = update(Product).where(Product.id == product_id)
    if enforce_floor and delta < 0:
        stmt = stmt.where(Product.stock >= -delta)
    stmt = stmt.values(**values).execution_options(synchronize_session=False)
    return db.session.execute(stmt).rowcount == 1


def set_stock(
    *,
    product_id: int,
    new_stock: int,
    actor_id: int,
    reason: str | None = None,
    log_type: str | None = None,
    attempts: int = 3,
) -> StockChange:
    """
    Set a product's stock to an absolute value.

    The write is keyed on the observed stock; if another writer got there
    first the observation is refreshed and the swap retried. The log type
    defaults to RESTOCK for increases and ADJUSTMENT otherwise.
    """
    if new_stock < 0:
        raise ValidationError("new_stock must be >= 0")

    for _ in range(attempts):
        product = db.session.get(Product, product_id, populate_existing=True)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")

        observed = product.stock
        swapped = compare_and_swap(
            Product,
            product_id,
            expected={"stock": observed},
            values={"stock": new_stock, "updated_at": utcnow()},
        )
        if not swapped:
            continue

        product = db.session.get(Product, product_id, populate_existing=True)
        kind = log_type or (LOG_RESTOCK if new_stock > observed else LOG_ADJUSTMENT)
        log = _append_log(product_id, kind, observed, new_stock, reason, actor_id)
        return StockChange(product=product, previous_stock=observed, new_stock=new_stock, log=log)

    raise ConflictError(
        "Stock changed concurrently, please retry",
        details={"product_id": product_id},
    )


# =============================================================================
# ADJUSTMENT BATCH
# =============================================================================

def adjust_inventory(adjustments, *, actor_id: int) -> list[dict]:
    """
    Apply a batch of {product_id, new_stock, reason} adjustments.

    Items are independent: each is validated, applied and committed on its
    own, so earlier successes survive later failures. The result list has one
    entry per input item, in order.
    """
    if not isinstance(adjustments, list) or not adjustments:
        raise ValidationError("adjustments must be a non-empty array")

    results = []
    for index, item in enumerate(adjustments):
        result = {"index": index, "product_id": item.get("product_id") if isinstance(item, dict) else None}
        try:
            change = _apply_adjustment(item, actor_id)
        except ValidationError as e:
            db.session.rollback()
            result.update({"ok": False, "error": str(e), "code": "VALIDATION"})
        except NotFoundError as e:
            db.session.rollback()
            result.update({"ok": False, "error": str(e), "code": "NOT_FOUND"})
        except ConflictError as e:
            db.session.rollback()
            result.update({"ok": False, "error": str(e), "code": "CONFLICT"})
        else:
            db.session.commit()
            notification_service.publish(_adjustment_events(change, actor_id))
            result.update({
                "ok": True,
                "product_id": change.product.id,
                "product_name": change.product.name,
                "previous_stock": change.previous_stock,
                "new_stock": change.new_stock,
                "difference": change.delta,
                "type": change.log.type,
                "log_id": change.log.id,
            })
        results.append(result)
    return results


def _apply_adjustment(item, actor_id: int) -> StockChange:
    if not isinstance(item, dict):
        raise ValidationError("Each adjustment must be an object")
    if item.get("product_id") in (None, ""):
        raise ValidationError("product_id is required")
    if item.get("new_stock") in (None, ""):
        raise ValidationError("new_stock is required")

    product_id = coerce_int(item["product_id"], "product_id")
    new_stock = coerce_int(item["new_stock"], "new_stock")
    reason = item.get("reason") or None

    return set_stock(product_id=product_id, new_stock=new_stock, actor_id=actor_id, reason=reason)


def _adjustment_events(change: StockChange, actor_id: int) -> list[NotificationEvent]:
    events = [
        notification_service.inventory_update_event(
            actor_id, change.product.name, abs(change.delta), change.log.type
        )
    ]
    if change.is_low_stock:
        events.append(
            notification_service.low_stock_event(actor_id, change.product.name, change.new_stock, change.product.id)
        )
    return events


# =============================================================================
# QUERIES
# =============================================================================

def list_inventory(
    *,
    search: str | None = None,
    category_id: int | None = None,
    low_stock: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Product).filter(Product.is_active.is_(True))

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
    if category_id:
        query = query.filter(Product.category_id == category_id)
    if low_stock:
        query = query.filter(Product.stock <= Product.min_stock)

    query = query.order_by(Product.name.asc())
    rows, pagination = paginate(query, page, per_page, default_per_page=50)
    return {"products": [p.to_dict() for p in rows], "pagination": pagination}


def list_logs(
    *,
    product_id: int | None = None,
    log_type: str | None = None,
    start: str | None = None,
    end: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(InventoryLog)

    if product_id:
        query = query.filter(InventoryLog.product_id == product_id)
    if log_type:
        log_type = log_type.upper()
        if log_type not in VALID_LOG_TYPES:
            raise ValidationError(f"type must be one of {', '.join(VALID_LOG_TYPES)}")
        query = query.filter(InventoryLog.type == log_type)

    try:
        start_dt, end_dt = parse_date_range(start, end)
    except ValueError:
        raise ValidationError("start_date/end_date must be ISO-8601 dates")
    if start_dt:
        query = query.filter(InventoryLog.created_at >= start_dt)
    if end_dt:
        query = query.filter(InventoryLog.created_at <= end_dt)

    query = query.order_by(InventoryLog.created_at.desc(), InventoryLog.id.desc())
    rows, pagination = paginate(query, page, per_page, default_per_page=20)
    return {"logs": [log.to_dict(include_refs=True) for log in rows], "pagination": pagination}


def recent_logs(product_id: int, limit: int = 10) -> list[InventoryLog]:
    return (
        db.session.query(InventoryLog)
        .filter(InventoryLog.product_id == product_id)
        .order_by(InventoryLog.created_at.desc(), InventoryLog.id.desc())
        .limit(limit)
        .all()
    )


def low_stock_products(category_id: int | None = None) -> list[Product]:
    query = db.session.query(Product).filter(
        Product.is_active.is_(True),
        Product.stock <= Product.min_stock,
    )
    if category_id:
        query = query.filter(Product.category_id == category_id)
    return query.order_by(Product.stock.asc(), Product.name.asc()).all()
