# Overview: Service-layer operations for invoice payments; append-only ledger with capped amounts.

"""
Invoice Payment Ledger

DESIGN PRINCIPLES:
- Payments are append-only; an entry is never edited or removed
- The recorded amount is the EFFECTIVE amount: min(requested, balance owed)
- Over-payment is clamped, never rejected, so the balance cannot go negative
- Concurrent payments on one invoice are serialized by the invoice version
  check (and row locks where the database supports them) and retried
- A client-supplied idempotency key makes a replayed request a no-op
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice, InvoicePayment, User
from ..models.invoices import STATUS_PAID, STATUS_PENDING
from ..totals import cents_to_amount
from ..validation import NotFoundError, ValidationError
from invoicedesk.time_utils import utcnow
from . import activity_service, invoice_repository
from .concurrency import run_with_retry
from .invoice_schemas import PaymentRequest

logger = logging.getLogger(__name__)

PAYMENT_RETRY_ATTEMPTS = 5


def _sync_status(invoice: Invoice) -> None:
    invoice.status = STATUS_PAID if invoice.remaining_balance_cents == 0 else STATUS_PENDING


def apply_payment(
    invoice: Invoice,
    amount_cents: int,
    *,
    recorded_by_user_id: int | None = None,
    note: str | None = None,
    idempotency_key: str | None = None,
) -> InvoicePayment | None:
    """
    Append a ledger entry of min(amount_cents, remaining) and update the balance.

    Returns None without touching the invoice when nothing is owed.
    Does not commit.
    """
    remaining = invoice.remaining_balance_cents
    if remaining <= 0 or amount_cents <= 0:
        return None

    effective = min(amount_cents, remaining)
    if effective < amount_cents:
        logger.info(
            "Clamped payment on invoice %s from %d to %d cents",
            invoice.receipt_number, amount_cents, effective,
        )

    payment = InvoicePayment(
        amount_cents=effective,
        paid_at=utcnow(),
        recorded_by_user_id=recorded_by_user_id,
        note=note,
        idempotency_key=idempotency_key,
    )
    invoice.payments.append(payment)
    invoice.remaining_balance_cents = remaining - effective
    _sync_status(invoice)
    return payment


def record_payment(
    invoice_id: int,
    request: PaymentRequest,
    *,
    actor: User | None = None,
    ip_address: str | None = None,
) -> Invoice:
    """
    Record a payment against an invoice and return the updated invoice.

    Raises:
        NotFoundError: no invoice with this id
        ValidationError: the invoice is already fully paid
        TransientError: storage stayed busy through every retry
    """
    def _op():
        invoice = invoice_repository.get_by_id(invoice_id, for_update=True)
        if not invoice:
            db.session.rollback()
            raise NotFoundError("Invoice not found")

        if request.idempotency_key:
            existing = invoice_repository.get_payment_by_key(invoice.id, request.idempotency_key)
            if existing:
                db.session.rollback()
                return invoice, None

        if invoice.remaining_balance_cents <= 0:
            db.session.rollback()
            raise ValidationError("Invoice is already fully paid")

        payment = apply_payment(
            invoice,
            request.amount_cents,
            recorded_by_user_id=actor.id if actor else None,
            note=request.note,
            idempotency_key=request.idempotency_key,
        )

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            # A concurrent replay of the same key won the race
            if request.idempotency_key and invoice_repository.get_payment_by_key(
                invoice_id, request.idempotency_key
            ):
                return invoice_repository.get_by_id(invoice_id), None
            raise

        return invoice, payment

    invoice, payment = run_with_retry(_op, attempts=PAYMENT_RETRY_ATTEMPTS)

    if payment is None:
        logger.info("Ignored replayed payment key %s on invoice %s", request.idempotency_key, invoice.receipt_number)
        return invoice

    logger.info(
        "Recorded payment of %d cents on invoice %s (remaining %d)",
        payment.amount_cents, invoice.receipt_number, invoice.remaining_balance_cents,
    )
    activity_service.log_activity(
        actor=actor,
        action=activity_service.ACTION_INVOICE_PAYMENT,
        details=(
            f"Payment of {cents_to_amount(payment.amount_cents):.2f} on invoice {invoice.receipt_number}"
            f" - Remaining: {cents_to_amount(invoice.remaining_balance_cents):.2f}"
        ),
        ip_address=ip_address,
    )
    return invoice
