"""
Payment status vocabulary and transition rules.

Pure functions only; nothing here touches the database. The reconciler in
payment_service calls transition() inside the same database transaction as
the status write and runs the returned effects only when its conditional
update actually changed the row.
"""

from __future__ import annotations

from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class Effect(str, Enum):
    DECREMENT_STOCK = "DECREMENT_STOCK"
    NOTIFY_PAYMENT_RECEIVED = "NOTIFY_PAYMENT_RECEIVED"
    NOTIFY_PAYMENT_FAILED = "NOTIFY_PAYMENT_FAILED"


TERMINAL_STATUSES = (PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.EXPIRED)

# Gateway vocabulary -> local status
_GATEWAY_STATUS_MAP = {
    "PAID": PaymentStatus.PAID,
    "SETTLED": PaymentStatus.PAID,
    "SUCCEEDED": PaymentStatus.PAID,
    "FAILED": PaymentStatus.FAILED,
    "EXPIRED": PaymentStatus.EXPIRED,
}


def map_gateway_status(raw: str | None) -> PaymentStatus:
    """Anything the gateway reports that we don't recognise counts as PENDING."""
    if not raw:
        return PaymentStatus.PENDING
    return _GATEWAY_STATUS_MAP.get(str(raw).strip().upper(), PaymentStatus.PENDING)


def parse_status(value: str) -> PaymentStatus:
    """Strict parse of a locally stored or client-supplied status."""
    try:
        return PaymentStatus(str(value).strip().upper())
    except ValueError:
        raise ValueError(f"Unknown payment status: {value}")


def transition(current: PaymentStatus, incoming: PaymentStatus) -> tuple[PaymentStatus, tuple[Effect, ...]]:
    """
    Decide the next status and the side effects of moving there.

    - PAID is absorbing.
    - Same status is a no-op.
    - FAILED / EXPIRED never fall back to PENDING.
    - Entering PAID decrements stock and announces the payment.
    - Entering FAILED announces the failure. EXPIRED has no extra effect.

    A no-op returns (current, ()).
    """
    current = PaymentStatus(current)
    incoming = PaymentStatus(incoming)

    if current == PaymentStatus.PAID or current == incoming:
        return current, ()

    if incoming == PaymentStatus.PENDING and current in TERMINAL_STATUSES:
        return current, ()

    if incoming == PaymentStatus.PAID:
        return PaymentStatus.PAID, (Effect.DECREMENT_STOCK, Effect.NOTIFY_PAYMENT_RECEIVED)

    if incoming == PaymentStatus.FAILED:
        return PaymentStatus.FAILED, (Effect.NOTIFY_PAYMENT_FAILED,)

    return incoming, ()
