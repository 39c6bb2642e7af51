# Overview: Service-layer operations for the activity audit trail.

"""
Activity Log Invariants

- Append-only: rows are never updated or deleted by the application.
- Written AFTER the primary operation commits, in a separate commit, so a
  failed audit write never rolls back or fails the operation it describes.
- Audit-write failures are logged and swallowed here and nowhere else.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import ActivityLog, LoginLog, User
from invoicedesk.time_utils import utcnow

logger = logging.getLogger(__name__)

ACTION_INVOICE_CREATED = "INVOICE_CREATED"
ACTION_INVOICE_UPDATED = "INVOICE_UPDATED"
ACTION_INVOICE_PAYMENT = "INVOICE_PAYMENT"
ACTION_INVOICE_DELETED = "INVOICE_DELETED"
ACTION_OVERDUE_ALERT = "OVERDUE_ALERT"

SYSTEM_USER_NAME = "System"


def log_activity(
    *,
    actor: User | None,
    action: str,
    details: str,
    ip_address: str | None = None,
    user_name: str | None = None,
) -> ActivityLog | None:
    """
    Append one audit record. Returns None (and logs) if the write fails.

    user_name defaults to the actor's name, or "System" when there is no actor.
    """
    try:
        entry = ActivityLog(
            user_id=actor.id if actor else None,
            user_name=user_name or (actor.name if actor else SYSTEM_USER_NAME),
            action=action,
            details=details,
            ip_address=ip_address,
            created_at=utcnow(),
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Failed to write %s activity record: %s", action, details, exc_info=True)
        return None


def list_activity(
    *,
    user_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[ActivityLog]:
    """Newest first; start/end are inclusive bounds on created_at."""
    query = db.session.query(ActivityLog)
    if user_id:
        query = query.filter(ActivityLog.user_id == user_id)
    if start:
        query = query.filter(ActivityLog.created_at >= start)
    if end:
        query = query.filter(ActivityLog.created_at <= end)
    return query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).all()


def list_logins(*, user_id: int | None = None) -> list[LoginLog]:
    query = db.session.query(LoginLog)
    if user_id:
        query = query.filter(LoginLog.user_id == user_id)
    return query.order_by(LoginLog.login_time.desc(), LoginLog.id.desc()).all()
