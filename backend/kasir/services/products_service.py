# backend/kasir/services/products_service.py
"""
Catalog: categories and products.

Product.stock is not a plain attribute here. Initial stock on create and
stock edits on update go through inventory_service.set_stock so that each
change is paired with a ledger entry.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Category, Product, TransactionItem, InventoryLog
from ..models.inventory import LOG_RESTOCK
from ..validation import ConflictError, NotFoundError, ValidationError, paginate
from .inventory_service import set_stock, recent_logs

PRODUCT_MUTABLE_FIELDS = {
    "sku", "barcode", "name", "description", "image",
    "price", "cost", "min_stock", "category_id", "is_active",
}

DEFAULT_PRODUCT_IMAGE = "/images/products/placeholder.svg"


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


# =============================================================================
# CATEGORIES
# =============================================================================

def list_categories() -> list[dict]:
    categories = db.session.query(Category).order_by(Category.name.asc()).all()
    return [c.to_dict() for c in categories]


def create_category(*, name: str | None, description: str | None = None) -> Category:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if len(name) > 120:
        raise ValidationError("name exceeds max length 120")

    if db.session.query(Category).filter(Category.name == name).first():
        raise ConflictError("Category already exists")

    category = Category(name=name, description=(description or "").strip() or None)
    db.session.add(category)
    db.session.commit()
    return category


def delete_category(category_id: int) -> None:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category not found")

    in_use = db.session.query(Product.id).filter(Product.category_id == category_id).count()
    if in_use:
        raise ConflictError(
            "Category still has products",
            details={"product_count": in_use},
        )

    db.session.delete(category)
    db.session.commit()


def _require_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category not found")
    return category


def _ensure_unique_sku(sku: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError("SKU already exists", details={"sku": sku})


# =============================================================================
# PRODUCTS
# =============================================================================

def list_products(
    *,
    search: str | None = None,
    category_id: int | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Product.name.ilike(pattern),
            Product.sku.ilike(pattern),
            Product.description.ilike(pattern),
        ))
    if category_id:
        query = query.filter(Product.category_id == category_id)

    query = query.order_by(Product.created_at.desc(), Product.id.desc())
    rows, pagination = paginate(query, page, per_page, default_per_page=10)
    return {"products": [p.to_dict() for p in rows], "pagination": pagination}


def get_product(product_id: int) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    data = product.to_dict()
    data["inventory_logs"] = [log.to_dict() for log in recent_logs(product_id, limit=10)]
    return data


def create_product(*, patch: dict, actor_id: int) -> Product:
    """
    Create a product from a validated patch.

    Raises NotFoundError (unknown category) or ConflictError (duplicate SKU).
    """
    _require_category(patch["category_id"])
    _ensure_unique_sku(patch["sku"])

    initial_stock = patch.get("stock") or 0

    p = Product(stock=0)
    apply_product_patch(p, patch)
    if not p.image:
        p.image = DEFAULT_PRODUCT_IMAGE

    db.session.add(p)
    db.session.flush()

    if initial_stock:
        set_stock(
            product_id=p.id,
            new_stock=initial_stock,
            actor_id=actor_id,
            reason="Initial stock",
            log_type=LOG_RESTOCK,
        )

    db.session.commit()
    return p


def update_product(*, product_id: int, patch: dict, actor_id: int) -> Product:
    """
    Partial update. A changed `stock` is applied through the ledger as an
    ADJUSTMENT/RESTOCK after the other fields are flushed.
    """
    p = db.session.get(Product, product_id)
    if p is None:
        raise NotFoundError("Product not found")

    if "category_id" in patch:
        _require_category(patch["category_id"])
    if "sku" in patch and patch["sku"] != p.sku:
        _ensure_unique_sku(patch["sku"], exclude_id=p.id)

    apply_product_patch(p, patch)
    db.session.flush()

    if "stock" in patch and patch["stock"] is not None and patch["stock"] != p.stock:
        set_stock(
            product_id=p.id,
            new_stock=patch["stock"],
            actor_id=actor_id,
            reason="Product update",
        )

    db.session.commit()
    return p


def delete_product(product_id: int) -> str:
    """
    Hard delete a product nobody has referenced yet; otherwise deactivate it
    so sales history and the ledger stay intact. Returns "deleted" or
    "deactivated".
    """
    p = db.session.get(Product, product_id)
    if p is None:
        raise NotFoundError("Product not found")

    referenced = (
        db.session.query(TransactionItem.id).filter(TransactionItem.product_id == product_id).first()
        or db.session.query(InventoryLog.id).filter(InventoryLog.product_id == product_id).first()
    )
    if referenced:
        p.is_active = False
        db.session.commit()
        return "deactivated"

    db.session.delete(p)
    db.session.commit()
    return "deleted"


def find_by_barcode(barcode: str | None) -> dict:
    barcode = (barcode or "").strip()
    if not barcode:
        raise ValidationError("Barcode is required")

    product = (
        db.session.query(Product)
        .filter(Product.barcode == barcode, Product.is_active.is_(True))
        .first()
    )
    if product is None:
        raise NotFoundError("Product not found")

    in_stock = product.stock > 0
    return {
        "product": product.to_dict(),
        "in_stock": in_stock,
        "message": "Product found and in stock" if in_stock else "Product found but out of stock",
    }
