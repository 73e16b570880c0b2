from __future__ import annotations

from ..extensions import db
from kasir.time_utils import to_utc_z


LOG_SALE = "SALE"
LOG_RESTOCK = "RESTOCK"
LOG_ADJUSTMENT = "ADJUSTMENT"
LOG_RETURN = "RETURN"
VALID_LOG_TYPES = (LOG_SALE, LOG_RESTOCK, LOG_ADJUSTMENT, LOG_RETURN)


class InventoryLog(db.Model):
    """
    Append-only audit trail of stock changes.

    `quantity` is the absolute size of the change; the direction follows from
    previous_stock/new_stock. Rows are never updated or deleted.
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.Index("ix_inventory_logs_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("inventory_logs", lazy="dynamic"))
    user = db.relationship("User")

    def to_dict(self, include_refs: bool = False) -> dict:
        data = {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
        if include_refs:
            data["product"] = {
                "name": self.product.name,
                "sku": self.product.sku,
                "category": self.product.category.name if self.product.category else None,
            }
            data["user"] = {"name": self.user.name} if self.user else None
        return data
