"""
Checkout.

A sale is created in one database transaction: the transaction row, its
line items and, when the sale is paid at the counter, the stock decrements
and SALE ledger entries. If any item cannot be fulfilled the whole sale is
rolled back. Notifications are published only after the commit.
"""

from __future__ import annotations

import secrets
import string

from sqlalchemy import or_

from ..extensions import db
from ..models import Transaction, TransactionItem, Product, User
from ..models.inventory import LOG_SALE
from ..models.sales import (
    PAYMENT_METHOD_CASH,
    VALID_PAYMENT_METHODS,
)
from ..validation import (
    ValidationError,
    NotFoundError,
    coerce_int,
    coerce_amount,
    paginate,
)
from kasir.time_utils import utcnow, epoch_millis, parse_date_range
from .concurrency import run_with_retry
from .inventory_service import apply_stock_change
from .payment_state import PaymentStatus
from . import notification_service


_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_transaction_number() -> str:
    """TXN-<epoch millis>-<9 random uppercase alphanumerics>"""
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(9))
    return f"TXN-{epoch_millis()}-{suffix}"


def sale_reason(transaction_number: str) -> str:
    return f"Sale - Transaction {transaction_number}"


def _normalize_items(items) -> list[tuple[int, int]]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty array")

    normalized = []
    seen = set()
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object")
        if item.get("product_id") in (None, ""):
            raise ValidationError("product_id is required for every item")

        product_id = coerce_int(item["product_id"], "product_id")
        quantity = coerce_int(item.get("quantity"), f"quantity for product {product_id}")
        if quantity <= 0:
            raise ValidationError(f"Invalid quantity for product {product_id}")
        if product_id in seen:
            raise ValidationError(f"Duplicate product {product_id} in items")
        seen.add(product_id)
        normalized.append((product_id, quantity))
    return normalized


def create_transaction(
    *,
    items,
    payment_method: str,
    cashier_id,
    tax_amount=0,
    discount_amount=0,
    payment_status: str | None = None,
    xendit_payment_id: str | None = None,
    xendit_invoice_url: str | None = None,
) -> Transaction:
    """
    Create a sale.

    Cash sales start PAID. Digital sales start PENDING unless the caller
    asserts the gateway already confirmed them (payment_status="PAID").
    Stock is only taken on the PAID path; pending sales are charged when the
    reconciler sees the payment.

    Raises ValidationError, NotFoundError, or InsufficientStockError.
    """
    method = (payment_method or "").strip().upper()
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(VALID_PAYMENT_METHODS)}")

    if cashier_id in (None, ""):
        raise ValidationError("cashier_id is required")
    cashier_id = coerce_int(cashier_id, "cashier_id")

    lines = _normalize_items(items)
    tax = coerce_amount(tax_amount, "tax_amount")
    discount = coerce_amount(discount_amount, "discount_amount")

    if method == PAYMENT_METHOD_CASH:
        initial_status = PaymentStatus.PAID
    elif payment_status and str(payment_status).strip().upper() == PaymentStatus.PAID.value:
        initial_status = PaymentStatus.PAID
    else:
        initial_status = PaymentStatus.PENDING

    def _op():
        cashier = db.session.get(User, cashier_id)
        if cashier is None or not cashier.is_active:
            raise ValidationError("Invalid cashier ID. Please log out and log in again.")

        products = {
            p.id: p
            for p in db.session.query(Product).filter(Product.id.in_([pid for pid, _ in lines])).all()
        }

        txn_items = []
        subtotal = 0
        for product_id, quantity in lines:
            product = products.get(product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} not found")
            if not product.is_active:
                raise ValidationError(f"Product {product.name} is not available for sale")

            line_total = product.price * quantity
            subtotal += line_total
            txn_items.append(TransactionItem(
                product_id=product_id,
                quantity=quantity,
                unit_price=product.price,
                total_price=line_total,
            ))

        final_amount = subtotal + tax - discount
        if final_amount < 0:
            raise ValidationError("discount_amount cannot exceed subtotal plus tax")

        now = utcnow()
        txn = Transaction(
            transaction_number=generate_transaction_number(),
            total_amount=subtotal,
            tax_amount=tax,
            discount_amount=discount,
            final_amount=final_amount,
            payment_method=method,
            payment_status=initial_status.value,
            xendit_payment_id=xendit_payment_id or None,
            xendit_invoice_url=xendit_invoice_url or None,
            cashier_id=cashier.id,
            created_at=now,
            paid_at=now if initial_status == PaymentStatus.PAID else None,
            items=txn_items,
        )
        db.session.add(txn)
        db.session.flush()

        events = []
        if initial_status == PaymentStatus.PAID:
            for product_id, quantity in lines:
                change = apply_stock_change(
                    product_id=product_id,
                    delta=-quantity,
                    log_type=LOG_SALE,
                    actor_id=cashier.id,
                    reason=sale_reason(txn.transaction_number),
                    enforce_floor=True,
                )
                if change.is_low_stock:
                    events.append(notification_service.low_stock_event(
                        cashier.id, change.product.name, change.new_stock, change.product.id
                    ))

        events.append(notification_service.new_order_event(cashier.id, txn.transaction_number, final_amount))

        db.session.commit()
        return txn, events

    try:
        txn, events = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    notification_service.publish(events)
    return txn


def get_transaction(transaction_id: int) -> Transaction:
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFoundError("Transaction not found")
    return txn


def list_transactions(
    *,
    search: str | None = None,
    start: str | None = None,
    end: str | None = None,
    status: str | None = None,
    payment_method: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Transaction)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Transaction.transaction_number.ilike(pattern),
            Transaction.xendit_payment_id.ilike(pattern),
        ))
    if status:
        query = query.filter(Transaction.payment_status == status.strip().upper())
    if payment_method:
        query = query.filter(Transaction.payment_method == payment_method.strip().upper())

    try:
        start_dt, end_dt = parse_date_range(start, end)
    except ValueError:
        raise ValidationError("start_date/end_date must be ISO-8601 dates")
    if start_dt:
        query = query.filter(Transaction.created_at >= start_dt)
    if end_dt:
        query = query.filter(Transaction.created_at <= end_dt)

    query = query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
    rows, pagination = paginate(query, page, per_page, default_per_page=10)
    return {"transactions": [t.to_dict() for t in rows], "pagination": pagination}
