# backend/kasir/routes/transactions.py
"""
Transaction (checkout) routes.

POST  /api/transactions          create a sale
GET   /api/transactions          paginated listing
GET   /api/transactions/<id>     one transaction with items
PATCH /api/transactions/<id>     record gateway references / manual status sync
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import transaction_service, payment_service
from ..validation import ValidationError, NotFoundError, ConflictError
from ..decorators import require_auth


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.post("")
@require_auth
def create_transaction_route():
    """
    Request body:
    {
        "items": [{"product_id": 1, "quantity": 3}, ...],
        "payment_method": "CASH" | "XENDIT_QRIS" | "XENDIT_EWALLET" | "XENDIT_VIRTUAL_ACCOUNT",
        "cashier_id": 7,            (optional, defaults to the caller)
        "tax_amount": 0,            (optional)
        "discount_amount": 0,       (optional)
        "payment_status": "PAID",   (optional, digital only: already confirmed)
        "xendit_payment_id": "...", (optional)
        "xendit_invoice_url": "..." (optional)
    }

    Unit prices come from the catalog, never from the client.

    Returns:
        201: Transaction created
        400: Invalid input
        404: Unknown product
        409: Insufficient stock (details lists the product)
    """
    try:
        data = request.get_json(silent=True) or {}

        txn = transaction_service.create_transaction(
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            cashier_id=data.get("cashier_id") or g.current_user.id,
            tax_amount=data.get("tax_amount"),
            discount_amount=data.get("discount_amount"),
            payment_status=data.get("payment_status"),
            xendit_payment_id=data.get("xendit_payment_id"),
            xendit_invoice_url=data.get("xendit_invoice_url"),
        )
        return jsonify(txn.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to create transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    """Query params: search, start_date, end_date, status, payment_method, page, per_page."""
    try:
        result = transaction_service.list_transactions(
            search=request.args.get("search"),
            start=request.args.get("start_date"),
            end=request.args.get("end_date"),
            status=request.args.get("status"),
            payment_method=request.args.get("payment_method"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@transactions_bp.get("/<int:transaction_id>")
@require_auth
def get_transaction_route(transaction_id: int):
    try:
        txn = transaction_service.get_transaction(transaction_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(txn.to_dict()), 200


@transactions_bp.patch("/<int:transaction_id>")
@require_auth
def update_transaction_route(transaction_id: int):
    """
    Request body (all optional):
    {"xendit_payment_id": "...", "xendit_invoice_url": "...", "payment_status": "PAID"}

    A payment_status goes through the same reconciliation as the webhook, so
    PAID here decrements stock exactly once and terminal statuses are kept.
    """
    try:
        result = payment_service.update_payment_fields(transaction_id, request.get_json(silent=True) or {})
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to update transaction")
        return jsonify({"error": "Internal server error"}), 500
