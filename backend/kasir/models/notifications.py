from __future__ import annotations

from ..extensions import db
from kasir.time_utils import to_utc_z


TYPE_INFO = "INFO"
TYPE_SUCCESS = "SUCCESS"
TYPE_WARNING = "WARNING"
TYPE_ERROR = "ERROR"
VALID_NOTIFICATION_TYPES = (TYPE_INFO, TYPE_SUCCESS, TYPE_WARNING, TYPE_ERROR)


class Notification(db.Model):
    """
    User-facing alert created as a side effect of sales, payments and stock
    changes. Owners may mark it read or delete it.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(16), nullable=False, default=TYPE_INFO)
    is_read = db.Column(db.Boolean, nullable=False, default=False)

    # "metadata" is reserved on declarative classes
    meta = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    user = db.relationship("User", backref=db.backref("notifications", lazy="dynamic", passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "is_read": self.is_read,
            "metadata": self.meta,
            "created_at": to_utc_z(self.created_at),
        }
