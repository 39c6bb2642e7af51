from __future__ import annotations

from ..extensions import db
from invoicedesk.time_utils import to_utc_z


class ActivityLog(db.Model):
    """
    Write-only audit trail of user actions (INVOICE_CREATED, INVOICE_PAYMENT, ...).

    Rows are never updated. details is a human-readable summary.
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    user_name = db.Column(db.String(128), nullable=False)
    action = db.Column(db.String(64), nullable=False, index=True)
    details = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user": self.user.to_summary() if self.user else None,
            "user_name": self.user_name,
            "action": self.action,
            "details": self.details,
            "ip_address": self.ip_address,
            "created_at": to_utc_z(self.created_at),
        }
