# backend/kasir/routes/products.py
"""
Catalog routes: products and categories.

All routes require authentication. Writes are limited to ADMIN and MANAGER.
"""
from flask import Blueprint, request, g, current_app

from ..services import products_service
from ..models import Product
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    NotFoundError,
    ConflictError,
)
from ..decorators import require_auth, require_role

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "barcode", "name", "description", "image",
        "price", "cost", "stock", "min_stock", "category_id", "is_active",
    },
    required_on_create={"sku", "name", "price", "category_id"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    Query params:
    - search: matches name, SKU or description
    - category_id: int
    - include_inactive: "true" to include deactivated products
    - page / per_page
    """
    return products_service.list_products(
        search=request.args.get("search"),
        category_id=request.args.get("category_id", type=int),
        include_inactive=request.args.get("include_inactive", "").lower() == "true",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.get("/barcode")
@require_auth
def barcode_lookup_route():
    try:
        return products_service.find_by_barcode(request.args.get("barcode"))
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return products_service.get_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = products_service.create_product(patch=patch, actor_id=g.current_user.id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e), "details": e.details}, 409

    return created.to_dict(), 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = products_service.update_product(
            product_id=product_id, patch=patch, actor_id=g.current_user.id
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e), "details": e.details}, 409

    return updated.to_dict(), 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_product_route(product_id: int):
    """Deactivates products with sales or ledger history; hard-deletes the rest."""
    try:
        outcome = products_service.delete_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    message = "Product deactivated" if outcome == "deactivated" else "Product deleted"
    return {"ok": True, "result": outcome, "message": message}, 200


# =============================================================================
# CATEGORIES
# =============================================================================

@categories_bp.get("")
@require_auth
def list_categories_route():
    return {"categories": products_service.list_categories()}


@categories_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_category_route():
    payload = request.get_json(silent=True) or {}
    try:
        category = products_service.create_category(
            name=payload.get("name"),
            description=payload.get("description"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to create category")
        return {"error": "Internal server error"}, 500

    return category.to_dict(), 201


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_category_route(category_id: int):
    try:
        products_service.delete_category(category_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e), "details": e.details}, 409

    return {"ok": True}, 200
