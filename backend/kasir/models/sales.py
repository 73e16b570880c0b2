from __future__ import annotations

from ..extensions import db
from kasir.time_utils import to_utc_z


PAYMENT_METHOD_CASH = "CASH"
PAYMENT_METHOD_QRIS = "XENDIT_QRIS"
PAYMENT_METHOD_EWALLET = "XENDIT_EWALLET"
PAYMENT_METHOD_VIRTUAL_ACCOUNT = "XENDIT_VIRTUAL_ACCOUNT"

DIGITAL_PAYMENT_METHODS = (
    PAYMENT_METHOD_QRIS,
    PAYMENT_METHOD_EWALLET,
    PAYMENT_METHOD_VIRTUAL_ACCOUNT,
)
VALID_PAYMENT_METHODS = (PAYMENT_METHOD_CASH,) + DIGITAL_PAYMENT_METHODS


class Transaction(db.Model):
    """
    A checkout. Items and totals are fixed at creation; afterwards only the
    payment fields (status, gateway id/url, channel, paid_at) change.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_status_created", "payment_status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "TXN-1717071234567-8K2J4QZ1M")
    transaction_number = db.Column(db.String(64), nullable=False, unique=True)

    # Whole rupiah
    total_amount = db.Column(db.Integer, nullable=False)
    tax_amount = db.Column(db.Integer, nullable=False, default=0)
    discount_amount = db.Column(db.Integer, nullable=False, default=0)
    final_amount = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(32), nullable=False, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    # Payment gateway references
    xendit_payment_id = db.Column(db.String(128), nullable=True, index=True)
    xendit_invoice_url = db.Column(db.String(512), nullable=True)
    payment_channel = db.Column(db.String(64), nullable=True)

    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    cashier = db.relationship("User")
    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionItem.id",
    )

    @property
    def is_digital(self) -> bool:
        return self.payment_method in DIGITAL_PAYMENT_METHODS

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} number={self.transaction_number!r} status={self.payment_status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "total_amount": self.total_amount,
            "tax_amount": self.tax_amount,
            "discount_amount": self.discount_amount,
            "final_amount": self.final_amount,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "xendit_payment_id": self.xendit_payment_id,
            "xendit_invoice_url": self.xendit_invoice_url,
            "payment_channel": self.payment_channel,
            "cashier_id": self.cashier_id,
            "cashier": {"id": self.cashier.id, "name": self.cashier.name} if self.cashier else None,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    """Line item with the unit price captured at checkout. Immutable."""
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "product_id", name="uq_transaction_items_txn_product"),
        db.CheckConstraint("quantity > 0", name="ck_transaction_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.Integer, db.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    total_price = db.Column(db.Integer, nullable=False)

    transaction = db.relationship("Transaction", back_populates="items")
    product = db.relationship("Product", backref=db.backref("transaction_items", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "product": {"name": self.product.name, "sku": self.product.sku} if self.product else None,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
        }
