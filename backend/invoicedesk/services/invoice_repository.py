# Overview: Persistence boundary for invoices and the atomic sequence counters.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice, InvoicePayment, SequenceCounter
from ..models.invoices import PAYMENT_TYPE_CREDIT, STATUS_PENDING
from .concurrency import lock_for_update


def increment_and_get(counter_key: str) -> int:
    """
    Atomically increment the named counter and return its new value.

    The first use of a key creates it with value 1. The increment is a single
    UPDATE ... SET seq = seq + 1, so the row stays write-locked until the
    surrounding transaction commits and no two transactions read the same value.
    Must be the first write of its transaction (a lost insert race rolls the
    session back).
    """
    stmt = (
        update(SequenceCounter)
        .where(SequenceCounter.key == counter_key)
        .values(seq=SequenceCounter.seq + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return _read_counter(counter_key)

    db.session.add(SequenceCounter(key=counter_key, seq=1))
    try:
        db.session.flush()
        return 1
    except IntegrityError:
        # Another transaction created the key first; increment theirs
        db.session.rollback()
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return _read_counter(counter_key)


def _read_counter(counter_key: str) -> int:
    return (
        db.session.query(SequenceCounter.seq)
        .filter(SequenceCounter.key == counter_key)
        .scalar()
    )


def add(invoice: Invoice) -> Invoice:
    db.session.add(invoice)
    db.session.flush()
    return invoice


def get_by_id(invoice_id: int, *, for_update: bool = False) -> Invoice | None:
    query = db.session.query(Invoice).filter(Invoice.id == invoice_id)
    if for_update:
        query = lock_for_update(query)
    return query.first()


def get_payment_by_key(invoice_id: int, idempotency_key: str) -> InvoicePayment | None:
    return (
        db.session.query(InvoicePayment)
        .filter_by(invoice_id=invoice_id, idempotency_key=idempotency_key)
        .first()
    )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def find(
    *,
    status: str | None = None,
    customer_name_contains: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Invoice]:
    """
    Query invoices, newest sale first.

    customer_name_contains is a case-insensitive substring match; start and
    end are inclusive bounds on sale_date.
    """
    query = db.session.query(Invoice)

    if status:
        query = query.filter(Invoice.status == status)
    if customer_name_contains:
        pattern = f"%{_escape_like(customer_name_contains)}%"
        query = query.filter(Invoice.customer_name.ilike(pattern, escape="\\"))
    if start:
        query = query.filter(Invoice.sale_date >= start)
    if end:
        query = query.filter(Invoice.sale_date <= end)

    return query.order_by(Invoice.sale_date.desc(), Invoice.id.desc()).all()


def find_overdue(as_of: datetime) -> list[Invoice]:
    """Credit invoices still owing money whose due date is before as_of, oldest due first."""
    return (
        db.session.query(Invoice)
        .filter(
            Invoice.payment_type == PAYMENT_TYPE_CREDIT,
            Invoice.status == STATUS_PENDING,
            Invoice.remaining_balance_cents > 0,
            Invoice.due_date.isnot(None),
            Invoice.due_date < as_of,
        )
        .order_by(Invoice.due_date.asc(), Invoice.id.asc())
        .all()
    )


def delete(invoice: Invoice) -> None:
    db.session.delete(invoice)
    db.session.flush()
