# backend/kasir/routes/notifications.py
"""
Notification routes. Users only ever see and change their own notifications.
"""

from flask import Blueprint, request, jsonify, g

from ..services import notification_service
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..validation import ValidationError, NotFoundError
from ..decorators import require_auth, require_role


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    """Query params: unread ("true" for unread only), page, per_page."""
    result = notification_service.list_notifications(
        g.current_user.id,
        unread_only=request.args.get("unread", "").lower() == "true",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result), 200


@notifications_bp.get("/unread-count")
@require_auth
def unread_count_route():
    return jsonify({"unread_count": notification_service.unread_count(g.current_user.id)}), 200


@notifications_bp.post("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(g.current_user.id, notification_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(notification.to_dict()), 200


@notifications_bp.post("/read-all")
@require_auth
def mark_all_read_route():
    count = notification_service.mark_all_read(g.current_user.id)
    return jsonify({"updated": count}), 200


@notifications_bp.delete("/<int:notification_id>")
@require_auth
def delete_notification_route(notification_id: int):
    try:
        notification_service.delete_notification(g.current_user.id, notification_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"ok": True}), 200


@notifications_bp.post("/broadcast")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def broadcast_route():
    """
    Request body:
    {"title": "...", "message": "...", "type": "INFO", "roles": ["CASHIER"]}
    roles is optional; omitted means every active user.
    """
    data = request.get_json(silent=True) or {}
    roles = data.get("roles")
    if roles is not None and not isinstance(roles, list):
        return jsonify({"error": "roles must be an array"}), 400

    try:
        count = notification_service.broadcast_notification(
            data.get("title"),
            data.get("message"),
            data.get("type") or "INFO",
            roles=roles,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"created": count}), 201
