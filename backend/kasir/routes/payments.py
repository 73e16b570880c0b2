# backend/kasir/routes/payments.py
"""
Digital payment routes.

POST /api/payments        create a gateway invoice for a pending transaction
POST /api/payments/check  synchronous status check against the gateway

Gateway failures are returned as 502 with whatever detail the gateway gave.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import payment_service
from ..services.payment_gateway import GatewayError
from ..validation import ValidationError, NotFoundError, ConflictError, coerce_int
from ..decorators import require_auth


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _gateway_error_response(e: GatewayError):
    return jsonify({
        "error": str(e),
        "gateway_status": e.status_code,
        "details": e.details,
    }), 502


@payments_bp.post("")
@require_auth
def initiate_payment_route():
    """
    Request body:
    {
        "transaction_id": 12,
        "amount": 35000,               (optional, defaults to the final amount)
        "customer_email": "a@b.com"    (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("transaction_id") in (None, ""):
            return jsonify({"error": "transaction_id is required"}), 400

        result = payment_service.initiate_payment(
            coerce_int(data["transaction_id"], "transaction_id"),
            amount=data.get("amount"),
            customer_email=data.get("customer_email"),
        )
        return jsonify(result), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except GatewayError as e:
        current_app.logger.warning("Invoice creation failed: %s", e)
        return _gateway_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to initiate payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/check")
@require_auth
def check_payment_route():
    """
    Request body: {"transaction_id": 12}

    Returns {"status": ..., "previous_status": ..., "changed": bool, "transaction": {...}}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("transaction_id") in (None, ""):
            return jsonify({"error": "Transaction ID is required"}), 400

        result = payment_service.check_payment_status(coerce_int(data["transaction_id"], "transaction_id"))
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except GatewayError as e:
        current_app.logger.warning("Payment status check failed: %s", e)
        return _gateway_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check payment status")
        return jsonify({"error": "Internal server error"}), 500
