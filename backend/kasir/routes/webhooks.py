# backend/kasir/routes/webhooks.py
"""
Inbound payment gateway webhook.

Deliveries are always acknowledged with 200 {"received": true} once the
callback token checks out, including deliveries that match no transaction
or carry an unreadable body: the gateway retries anything else, and a retry
cannot fix those.
"""

import hmac

from flask import Blueprint, request, jsonify, current_app

from ..services import payment_service


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


def _callback_token_ok() -> bool:
    expected = current_app.config.get("XENDIT_CALLBACK_TOKEN")
    if not expected:
        return True
    received = request.headers.get("x-callback-token", "")
    return hmac.compare_digest(received, expected)


@webhooks_bp.post("/xendit")
def xendit_webhook_route():
    if not _callback_token_ok():
        current_app.logger.warning("Rejected webhook with invalid callback token from %s", request.remote_addr)
        return jsonify({"error": "Invalid callback token"}), 401

    payload = request.get_json(silent=True)
    if payload is None:
        current_app.logger.warning("Ignoring webhook with unparseable body")
        return jsonify({"received": True}), 200

    try:
        result = payment_service.handle_webhook(payload)
    except Exception:
        current_app.logger.exception("Failed to process payment webhook")
        return jsonify({"error": "Internal server error"}), 500

    if result is None:
        return jsonify({"received": True}), 200

    return jsonify({
        "received": True,
        "transaction_id": result.transaction.id,
        "status": result.status.value,
        "changed": result.changed,
    }), 200
