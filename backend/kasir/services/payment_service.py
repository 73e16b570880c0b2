"""
Digital payment initiation and payment status reconciliation.

Three triggers can observe a gateway status for the same transaction: the
webhook, the synchronous "check payment" call, and a manual sync (PATCH on
the transaction or the reconcile-pending CLI command). All of them funnel
into reconcile(), which:

1. reads the stored status,
2. asks payment_state.transition() for the next status and its effects,
3. writes the new status with
       UPDATE transactions SET payment_status = :next
       WHERE id = :id AND payment_status = :observed
4. runs the effects (stock decrements) only if that update changed exactly
   one row, in the same database transaction, then commits,
5. publishes notifications after the commit.

A duplicate or racing trigger finds the row already moved, so the PAID side
effects happen once per transaction.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Transaction
from ..models.inventory import LOG_SALE
from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    coerce_amount,
)
from kasir.time_utils import utcnow, epoch_millis
from .concurrency import lock_for_update, compare_and_swap, run_with_retry
from .inventory_service import apply_stock_change
from .payment_gateway import GatewayError, get_gateway
from .payment_state import (
    PaymentStatus,
    Effect,
    map_gateway_status,
    parse_status,
    transition,
)
from .transaction_service import sale_reason
from . import notification_service
from .notification_service import NotificationEvent


# external_id format: txn-<transaction id>-<epoch millis>
EXTERNAL_ID_PATTERN = re.compile(r"^txn-([^-]+)-")

# Columns a trigger may record alongside a status observation
_GATEWAY_FIELDS = ("xendit_payment_id", "xendit_invoice_url", "payment_channel")


@dataclass
class ReconcileResult:
    transaction: Transaction
    previous_status: PaymentStatus
    status: PaymentStatus
    changed: bool
    effects: tuple = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "previous_status": self.previous_status.value,
            "changed": self.changed,
            "transaction": self.transaction.to_dict(),
        }


# =============================================================================
# CORE
# =============================================================================

def _record_gateway_fields(transaction_id: int, gateway_fields: dict | None) -> None:
    values = {
        key: value
        for key, value in (gateway_fields or {}).items()
        if key in _GATEWAY_FIELDS and value
    }
    if not values:
        return
    db.session.execute(
        update(Transaction)
        .where(Transaction.id == transaction_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def _run_effects(txn: Transaction, effects, *, failure_reason: str | None = None) -> list[NotificationEvent]:
    events: list[NotificationEvent] = []

    for effect in effects:
        if effect == Effect.DECREMENT_STOCK:
            for item in txn.items:
                # The customer has already paid; a shortfall is logged, not refused.
                change = apply_stock_change(
                    product_id=item.product_id,
                    delta=-item.quantity,
                    log_type=LOG_SALE,
                    actor_id=txn.cashier_id,
                    reason=sale_reason(txn.transaction_number),
                    enforce_floor=False,
                )
                if change.is_low_stock:
                    events.append(notification_service.low_stock_event(
                        txn.cashier_id, change.product.name, change.new_stock, change.product.id
                    ))
        elif effect == Effect.NOTIFY_PAYMENT_RECEIVED:
            events.append(notification_service.payment_received_event(
                txn.cashier_id, txn.transaction_number, txn.final_amount
            ))
        elif effect == Effect.NOTIFY_PAYMENT_FAILED:
            events.append(notification_service.payment_failed_event(
                txn.cashier_id, txn.transaction_number, failure_reason
            ))

    return events


def apply_transition(
    transaction_id: int,
    observed,
    incoming,
    *,
    gateway_fields: dict | None = None,
    failure_reason: str | None = None,
) -> tuple[ReconcileResult | None, list[NotificationEvent]]:
    """
    Move a transaction from `observed` towards `incoming` inside the current
    database transaction. Does not commit.

    Returns (None, []) when the stored status no longer equals `observed`
    (another trigger won the race); the caller re-reads and retries.
    """
    observed = PaymentStatus(observed)
    incoming = PaymentStatus(incoming)

    _record_gateway_fields(transaction_id, gateway_fields)

    next_status, effects = transition(observed, incoming)

    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFoundError("Transaction not found")

    if next_status == observed:
        return ReconcileResult(txn, observed, observed, changed=False), []

    values = {"payment_status": next_status.value, "updated_at": utcnow()}
    if next_status == PaymentStatus.PAID:
        values["paid_at"] = utcnow()

    swapped = compare_and_swap(
        Transaction,
        transaction_id,
        expected={"payment_status": observed.value},
        values=values,
    )
    if not swapped:
        return None, []

    events = _run_effects(txn, effects, failure_reason=failure_reason)
    return ReconcileResult(txn, observed, next_status, changed=True, effects=effects), events


def reconcile(
    transaction_id: int,
    incoming,
    *,
    gateway_fields: dict | None = None,
    failure_reason: str | None = None,
    source: str = "manual",
    attempts: int = 3,
) -> ReconcileResult:
    """Shared routine behind every trigger. Commits, then publishes notifications."""
    incoming = PaymentStatus(incoming)

    def _op():
        for _ in range(attempts):
            txn = lock_for_update(
                db.session.query(Transaction).filter(Transaction.id == transaction_id)
            ).populate_existing().first()
            if txn is None:
                raise NotFoundError("Transaction not found")

            result, events = apply_transition(
                transaction_id,
                txn.payment_status,
                incoming,
                gateway_fields=gateway_fields,
                failure_reason=failure_reason,
            )
            if result is not None:
                db.session.commit()
                return result, events

        raise ConflictError(
            "Payment status changed concurrently, please retry",
            details={"transaction_id": transaction_id},
        )

    try:
        result, events = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    if result.changed:
        current_app.logger.info(
            "Transaction %s payment status %s -> %s (%s)",
            transaction_id, result.previous_status.value, result.status.value, source,
        )
    notification_service.publish(events)
    return result


# =============================================================================
# TRIGGER: WEBHOOK
# =============================================================================

def _descriptor(value) -> str | None:
    """payment_method / payment_channel arrive either as a string or as {"type": ...}."""
    if isinstance(value, dict):
        value = value.get("type")
    if value in (None, ""):
        return None
    return str(value)[:64]


def _gateway_text(value, max_length: int) -> str | None:
    """Only non-empty strings are stored; anything else in the payload is dropped."""
    if not isinstance(value, str) or not value:
        return None
    return value[:max_length]


def find_transaction_for_webhook(external_id: str, invoice_id: str | None = None) -> Transaction | None:
    match = EXTERNAL_ID_PATTERN.match(external_id)
    if match:
        try:
            txn = db.session.get(Transaction, int(match.group(1)))
        except ValueError:
            txn = None
        if txn is not None:
            return txn

    candidates = [external_id] + ([invoice_id] if invoice_id else [])
    return (
        db.session.query(Transaction)
        .filter(Transaction.xendit_payment_id.in_(candidates))
        .order_by(Transaction.id.asc())
        .first()
    )


def handle_webhook(payload) -> ReconcileResult | None:
    """
    Apply an inbound gateway notification.

    Returns None when the payload cannot be matched to a transaction; the
    caller still acknowledges the delivery.
    """
    if not isinstance(payload, dict):
        current_app.logger.warning("Ignoring webhook with non-object body")
        return None

    external_id = payload.get("external_id") or payload.get("externalId")
    invoice_id = payload.get("id")
    if not external_id:
        current_app.logger.info("Ignoring webhook without external_id")
        return None

    external_id = str(external_id)
    invoice_id = str(invoice_id) if invoice_id else None

    txn = find_transaction_for_webhook(external_id, invoice_id)
    if txn is None:
        current_app.logger.info("No transaction found for webhook external_id=%s", external_id)
        return None

    incoming = map_gateway_status(payload.get("status"))
    current_app.logger.info(
        "Webhook for transaction %s: gateway status %r -> %s",
        txn.id, payload.get("status"), incoming.value,
    )

    return reconcile(
        txn.id,
        incoming,
        gateway_fields={
            "xendit_payment_id": _gateway_text(invoice_id or external_id, 128),
            "xendit_invoice_url": _gateway_text(payload.get("invoice_url"), 512),
            "payment_channel": _descriptor(payload.get("payment_channel")) or _descriptor(payload.get("payment_method")),
        },
        failure_reason=_gateway_text(payload.get("failure_code") or payload.get("failure_reason"), 255),
        source="webhook",
    )


# =============================================================================
# TRIGGER: SYNCHRONOUS STATUS CHECK
# =============================================================================

def check_payment_status(transaction_id: int) -> ReconcileResult:
    """
    Align a transaction with the gateway's current view.

    Already PAID and transactions without a gateway id return the stored
    state untouched. Gateway failures propagate as GatewayError.
    """
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFoundError("Transaction not found")

    current = PaymentStatus(txn.payment_status)
    if current == PaymentStatus.PAID or not txn.xendit_payment_id:
        return ReconcileResult(txn, current, current, changed=False)

    invoice = get_gateway().get_invoice(txn.xendit_payment_id)
    incoming = map_gateway_status(invoice.status)

    return reconcile(
        transaction_id,
        incoming,
        gateway_fields={
            "xendit_invoice_url": _gateway_text(invoice.url, 512),
            "payment_channel": _descriptor(invoice.payment_channel) or _descriptor(invoice.payment_method),
        },
        source="status_check",
    )


# =============================================================================
# TRIGGER: MANUAL SYNC
# =============================================================================

def update_payment_fields(transaction_id: int, payload: dict) -> ReconcileResult:
    """
    Record gateway references on a transaction and, if a payment_status is
    given, run it through the reconciler. Items and totals are never touched.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    allowed = {"xendit_payment_id", "xendit_invoice_url", "payment_status"}
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    fields = {k: str(payload[k]).strip() for k in ("xendit_payment_id", "xendit_invoice_url") if payload.get(k)}
    if len(fields.get("xendit_payment_id", "")) > 128:
        raise ValidationError("xendit_payment_id exceeds max length 128")
    if len(fields.get("xendit_invoice_url", "")) > 512:
        raise ValidationError("xendit_invoice_url exceeds max length 512")

    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFoundError("Transaction not found")

    if payload.get("payment_status"):
        try:
            incoming = parse_status(payload["payment_status"])
        except ValueError as e:
            raise ValidationError(str(e))
    else:
        incoming = PaymentStatus(txn.payment_status)

    return reconcile(transaction_id, incoming, gateway_fields=fields, source="manual")


def reconcile_pending(limit: int | None = None) -> dict:
    """
    Run the status check for every PENDING digital transaction with a
    gateway id. A gateway failure on one transaction does not stop the rest.
    """
    query = (
        db.session.query(Transaction.id)
        .filter(
            Transaction.payment_status == PaymentStatus.PENDING.value,
            Transaction.xendit_payment_id.isnot(None),
        )
        .order_by(Transaction.created_at.asc())
    )
    if limit:
        query = query.limit(limit)

    summary = {"checked": 0, "changed": 0, "failed": 0, "statuses": {}}
    for (transaction_id,) in query.all():
        summary["checked"] += 1
        try:
            result = check_payment_status(transaction_id)
        except GatewayError as e:
            summary["failed"] += 1
            current_app.logger.warning("Status check failed for transaction %s: %s", transaction_id, e)
            continue
        if result.changed:
            summary["changed"] += 1
        summary["statuses"][result.status.value] = summary["statuses"].get(result.status.value, 0) + 1
    return summary


# =============================================================================
# INITIATION
# =============================================================================

def initiate_payment(transaction_id: int, *, amount=None, customer_email: str | None = None) -> dict:
    """
    Create a gateway invoice for a pending digital transaction and store its
    id and checkout URL. No retry: a GatewayError reaches the caller.
    """
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFoundError("Transaction not found")
    if not txn.is_digital:
        raise ConflictError("Cash transactions do not need a payment invoice")
    if txn.payment_status != PaymentStatus.PENDING.value:
        raise ConflictError(
            f"Transaction is already {txn.payment_status}",
            details={"payment_status": txn.payment_status},
        )

    invoice_amount = coerce_amount(amount, "amount") if amount not in (None, "") else txn.final_amount
    if invoice_amount <= 0:
        raise ValidationError("amount must be greater than 0")

    cfg = current_app.config
    base_url = cfg["APP_BASE_URL"].rstrip("/")
    external_id = f"txn-{txn.id}-{epoch_millis()}"

    invoice = get_gateway().create_invoice(
        amount=invoice_amount,
        currency=cfg["CURRENCY"],
        external_id=external_id,
        payer_email=customer_email or cfg["DEFAULT_PAYER_EMAIL"],
        description=f"Payment for Transaction {txn.transaction_number}",
        success_url=f"{base_url}/dashboard/pos?payment=success&transaction_id={txn.id}",
        failure_url=f"{base_url}/dashboard/pos?payment=failed&transaction_id={txn.id}",
        webhook_url=f"{base_url}/api/webhooks/xendit",
        duration=cfg["INVOICE_DURATION_SECONDS"],
    )

    txn.xendit_payment_id = invoice.id
    txn.xendit_invoice_url = invoice.url
    db.session.commit()

    current_app.logger.info("Created invoice %s for transaction %s", invoice.id, txn.id)

    return {
        "invoice_id": invoice.id,
        "invoice_url": invoice.url,
        "external_id": external_id,
        "status": invoice.status,
        "amount": invoice_amount,
        "transaction": txn.to_dict(),
    }
