"""
Notification Service

User-facing alerts for stock and payment events.

Core mutations (sales, reconciliation, stock adjustments) never write
notifications inline. They collect NotificationEvent values and hand them to
publish() after their own commit, so a failure here can never undo a sale or
a status change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..models import Notification, User
from ..models.auth import VALID_ROLES
from ..models.notifications import (
    TYPE_INFO,
    TYPE_SUCCESS,
    TYPE_WARNING,
    TYPE_ERROR,
    VALID_NOTIFICATION_TYPES,
)
from ..validation import ValidationError, NotFoundError, paginate
from kasir.time_utils import utcnow


@dataclass(frozen=True)
class NotificationEvent:
    """A notification to be created once the originating mutation commits."""
    user_id: int
    title: str
    message: str
    type: str = TYPE_INFO
    metadata: dict = field(default_factory=dict)


def format_idr(amount: int) -> str:
    """Format whole rupiah the way id-ID locales do: Rp 35.000,00"""
    text = f"{amount:,.2f}"
    return "Rp " + text.replace(",", "_").replace(".", ",").replace("_", ".")


# =============================================================================
# EVENT BUILDERS
# =============================================================================

def low_stock_event(user_id: int, product_name: str, current_stock: int, product_id: int | None = None) -> NotificationEvent:
    return NotificationEvent(
        user_id=user_id,
        title="Low Stock Alert",
        message=f'Product "{product_name}" is running low ({current_stock} remaining)',
        type=TYPE_WARNING,
        metadata={"product_id": product_id, "product_name": product_name, "current_stock": current_stock},
    )


def new_order_event(user_id: int, transaction_number: str, amount: int) -> NotificationEvent:
    return NotificationEvent(
        user_id=user_id,
        title="New Order",
        message=f"Order #{transaction_number} has been placed ({format_idr(amount)})",
        type=TYPE_INFO,
        metadata={"transaction_number": transaction_number, "amount": amount},
    )


def payment_received_event(user_id: int, transaction_number: str, amount: int) -> NotificationEvent:
    return NotificationEvent(
        user_id=user_id,
        title="Payment Received",
        message=f"Payment of {format_idr(amount)} has been confirmed for order #{transaction_number}",
        type=TYPE_SUCCESS,
        metadata={"transaction_number": transaction_number, "amount": amount},
    )


def payment_failed_event(user_id: int, transaction_number: str, reason: str | None = None) -> NotificationEvent:
    suffix = f": {reason}" if reason else ""
    return NotificationEvent(
        user_id=user_id,
        title="Payment Failed",
        message=f"Payment for order #{transaction_number} has failed{suffix}",
        type=TYPE_ERROR,
        metadata={"transaction_number": transaction_number, "reason": reason},
    )


def inventory_update_event(user_id: int, product_name: str, quantity: int, log_type: str) -> NotificationEvent:
    return NotificationEvent(
        user_id=user_id,
        title="Inventory Updated",
        message=f"{product_name}: {log_type} of {quantity} units",
        type=TYPE_INFO,
        metadata={"product_name": product_name, "quantity": quantity, "type": log_type},
    )


# =============================================================================
# CREATION
# =============================================================================

def _validate_type(notification_type: str) -> str:
    value = (notification_type or TYPE_INFO).upper()
    if value not in VALID_NOTIFICATION_TYPES:
        raise ValidationError(f"type must be one of {', '.join(VALID_NOTIFICATION_TYPES)}")
    return value


def create_notification(
    user_id: int,
    title: str,
    message: str,
    notification_type: str = TYPE_INFO,
    metadata: dict | None = None,
) -> Notification:
    """
    Create one notification and commit it.

    Persistence errors propagate to the caller.
    """
    if not title or not message:
        raise ValidationError("title and message are required")

    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found")

    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=_validate_type(notification_type),
        meta=metadata,
        created_at=utcnow(),
    )
    db.session.add(notification)
    db.session.commit()
    return notification


def broadcast_notification(
    title: str,
    message: str,
    notification_type: str = TYPE_INFO,
    roles: Iterable[str] | None = None,
) -> int:
    """
    Create the same notification for every active user, optionally limited
    to the given roles. Returns the number of notifications created.
    """
    if not title or not message:
        raise ValidationError("title and message are required")

    ntype = _validate_type(notification_type)

    query = db.session.query(User.id).filter(User.is_active.is_(True))
    if roles:
        roles = [r.upper() for r in roles]
        unknown = [r for r in roles if r not in VALID_ROLES]
        if unknown:
            raise ValidationError(f"Unknown roles: {', '.join(unknown)}")
        query = query.filter(User.role.in_(roles))

    now = utcnow()
    count = 0
    for (user_id,) in query.all():
        db.session.add(Notification(user_id=user_id, title=title, message=message, type=ntype, created_at=now))
        count += 1

    db.session.commit()
    return count


def publish(events: Iterable[NotificationEvent]) -> int:
    """
    Deliver events collected by a committed mutation.

    Each event is written in its own commit. A failed delivery is logged and
    skipped; it never reaches the caller. Returns the number delivered.
    """
    delivered = 0
    for event in events:
        try:
            db.session.add(Notification(
                user_id=event.user_id,
                title=event.title,
                message=event.message,
                type=event.type,
                meta=event.metadata or None,
                created_at=utcnow(),
            ))
            db.session.commit()
            delivered += 1
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to deliver notification %r to user %s", event.title, event.user_id)
    return delivered


# =============================================================================
# READ / MUTATE (owner only)
# =============================================================================

def list_notifications(user_id: int, *, unread_only: bool = False, page: int | None = None, per_page: int | None = None) -> dict:
    query = db.session.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())

    rows, pagination = paginate(query, page, per_page, default_per_page=20)
    return {
        "notifications": [n.to_dict() for n in rows],
        "unread_count": unread_count(user_id),
        "pagination": pagination,
    }


def unread_count(user_id: int) -> int:
    return db.session.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read.is_(False),
    ).count()


def _owned(user_id: int, notification_id: int) -> Notification:
    notification = db.session.query(Notification).filter_by(id=notification_id, user_id=user_id).first()
    if notification is None:
        raise NotFoundError("Notification not found")
    return notification


def mark_read(user_id: int, notification_id: int) -> Notification:
    notification = _owned(user_id, notification_id)
    notification.is_read = True
    db.session.commit()
    return notification


def mark_all_read(user_id: int) -> int:
    count = db.session.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read.is_(False),
    ).update({Notification.is_read: True}, synchronize_session=False)
    db.session.commit()
    return count


def delete_notification(user_id: int, notification_id: int) -> None:
    notification = _owned(user_id, notification_id)
    db.session.delete(notification)
    db.session.commit()
