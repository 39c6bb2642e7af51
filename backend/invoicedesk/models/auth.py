from __future__ import annotations

from ..extensions import db
from invoicedesk.time_utils import to_utc_z

ROLE_CEO = "ceo"
ROLE_MANAGER = "manager"
VALID_ROLES = (ROLE_CEO, ROLE_MANAGER)


class User(db.Model):
    """
    User accounts for authentication and attribution.

    WHY: Every invoice, payment, and deletion must be attributable to a person.
    Role is either "ceo" or "manager"; only the CEO may delete invoices.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("role IN ('ceo', 'manager')", name="ck_users_role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default=ROLE_MANAGER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_summary(self) -> dict:
        """Display fields embedded in invoices and audit records."""
        return {"id": self.id, "name": self.name, "email": self.email}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Opaque bearer tokens. Only the SHA-256 hash of a token is stored.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))


class LoginLog(db.Model):
    """One row per successful login; logout_time is filled in on logout."""
    __tablename__ = "login_logs"
    __table_args__ = (
        db.Index("ix_login_logs_user_login_time", "user_id", "login_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user_name = db.Column(db.String(128), nullable=False)
    login_time = db.Column(db.DateTime(timezone=True), nullable=False)
    logout_time = db.Column(db.DateTime(timezone=True), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user": self.user.to_summary() if self.user else None,
            "user_name": self.user_name,
            "login_time": to_utc_z(self.login_time),
            "logout_time": to_utc_z(self.logout_time) if self.logout_time else None,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }
