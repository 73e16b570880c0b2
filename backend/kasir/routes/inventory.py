# backend/kasir/routes/inventory.py
"""
Inventory routes.

- GET  /api/inventory        stock listing (any authenticated user)
- POST /api/inventory/adjust batch stock adjustment (ADMIN, MANAGER)
- GET  /api/inventory/logs   ledger listing (any authenticated user)
"""
from flask import Blueprint, request, g, current_app

from ..services import inventory_service
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..validation import ValidationError
from ..decorators import require_auth, require_role


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("")
@require_auth
def list_inventory_route():
    """
    Query params: search, category_id, low_stock ("true": stock <= min_stock),
    page, per_page.
    """
    return inventory_service.list_inventory(
        search=request.args.get("search"),
        category_id=request.args.get("category_id", type=int),
        low_stock=request.args.get("low_stock", "").lower() == "true",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@inventory_bp.post("/adjust")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def adjust_inventory_route():
    """
    Request body:
    {
        "adjustments": [
            {"product_id": 1, "new_stock": 25, "reason": "Weekly count"},
            ...
        ]
    }

    Items are applied independently. The response lists one result per item;
    a batch with failures still returns 200, and the caller reads "failed".
    """
    payload = request.get_json(silent=True) or {}

    try:
        results = inventory_service.adjust_inventory(
            payload.get("adjustments"),
            actor_id=g.current_user.id,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to adjust inventory")
        return {"error": "Internal server error"}, 500

    applied = sum(1 for r in results if r["ok"])
    return {
        "results": results,
        "applied": applied,
        "failed": len(results) - applied,
    }, 200


@inventory_bp.get("/logs")
@require_auth
def list_logs_route():
    """Query params: product_id, type, start_date, end_date, page, per_page."""
    try:
        return inventory_service.list_logs(
            product_id=request.args.get("product_id", type=int),
            log_type=request.args.get("type"),
            start=request.args.get("start_date"),
            end=request.args.get("end_date"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
