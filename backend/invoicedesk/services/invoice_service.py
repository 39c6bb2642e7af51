# Overview: Invoice lifecycle; creation, metadata update, lookup, deletion and overdue queries.

"""
Invoice Lifecycle Service

STATES: pending -> paid (when the balance reaches 0). There is no way back:
payments are append-only and nothing here reverses them.

CREATION (one transaction):
1. Mint the receipt number (first write of the transaction)
2. Snapshot lines and computed totals
3. cash   -> balance 0, one settlement entry for the full amount
   credit -> balance = final amount, initial payments applied with the cap
4. status = paid iff balance == 0

A receipt-number collision on insert is retried once with a fresh number.
A second collision means the counter is not atomic and is raised as
ConflictError.

Audit records are written after the primary commit and never fail the
operation they describe.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice, InvoiceLine, InvoicePayment, User
from ..models.invoices import PAYMENT_TYPE_CASH, STATUS_PAID, STATUS_PENDING
from ..totals import cents_to_amount
from ..validation import ConflictError, ModelValidationPolicy, NotFoundError, ValidationError, validate_payload
from invoicedesk.time_utils import utcnow
from . import activity_service, invoice_repository, sequence_service
from .concurrency import run_with_retry
from .invoice_schemas import CreateInvoiceRequest
from .payment_service import apply_payment

logger = logging.getLogger(__name__)

CASH_SETTLEMENT_NOTE = "Paid in full at sale"

INVOICE_METADATA_POLICY = ModelValidationPolicy(
    writable_fields={"due_date", "notes", "customer_name"},
)


def _is_receipt_collision(exc: IntegrityError) -> bool:
    return "receipt_number" in str(exc.orig)


def _resolve_seller(request: CreateInvoiceRequest, actor: User | None) -> tuple[int | None, str | None]:
    seller = actor
    if request.sold_by_user_id is not None and (actor is None or request.sold_by_user_id != actor.id):
        seller = db.session.get(User, request.sold_by_user_id)
        if seller is None:
            raise ValidationError("sold_by user not found")

    seller_name = request.seller_name or (seller.name if seller else None)
    return (seller.id if seller else None), seller_name


def _build_invoice(
    request: CreateInvoiceRequest,
    receipt_number: str,
    *,
    sold_by_user_id: int | None,
    seller_name: str | None,
    customer_name: str,
    recorded_by_user_id: int | None,
) -> Invoice:
    totals = request.totals
    now = utcnow()

    invoice = Invoice(
        receipt_number=receipt_number,
        sale_date=request.sale_date or now,
        sold_by_user_id=sold_by_user_id,
        seller_name=seller_name,
        customer_name=customer_name,
        payment_type=request.payment_type,
        total_amount_cents=totals.total_amount_cents,
        total_discount_cents=totals.total_discount_cents,
        final_amount_cents=totals.final_amount_cents,
        total_profit_cents=totals.total_profit_cents,
        total_items=totals.total_items,
        due_date=request.due_date,
        notes=request.notes,
    )

    for position, item in enumerate(request.items):
        invoice.lines.append(InvoiceLine(
            position=position,
            product_id=item.product_id,
            product_name=item.product_name,
            unit=item.unit,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            discount_cents=item.discount_cents,
            cost_price_cents=item.cost_price_cents,
            final_amount_cents=item.final_amount_cents,
        ))

    if request.payment_type == PAYMENT_TYPE_CASH:
        invoice.remaining_balance_cents = 0
        if totals.final_amount_cents > 0:
            invoice.payments.append(InvoicePayment(
                amount_cents=totals.final_amount_cents,
                paid_at=invoice.sale_date,
                recorded_by_user_id=recorded_by_user_id,
                note=CASH_SETTLEMENT_NOTE,
            ))
    else:
        invoice.remaining_balance_cents = totals.final_amount_cents
        for payment in request.initial_payments:
            if invoice.remaining_balance_cents == 0:
                logger.info("Skipping initial payment on settled invoice %s", receipt_number)
                break
            apply_payment(
                invoice,
                payment.amount_cents,
                recorded_by_user_id=recorded_by_user_id,
                note=payment.note,
            )

    invoice.status = STATUS_PAID if invoice.remaining_balance_cents == 0 else STATUS_PENDING
    return invoice


def create_invoice(
    request: CreateInvoiceRequest,
    *,
    actor: User | None = None,
    ip_address: str | None = None,
) -> Invoice:
    """
    Create and persist an invoice with a freshly minted receipt number.

    Raises:
        ValidationError: unknown sold_by user
        ConflictError: the receipt number collided twice
        TransientError: storage stayed busy through every retry
    """
    customer_name = request.customer_name or current_app.config.get("DEFAULT_CUSTOMER_NAME", "Walk-in")
    sold_by_user_id, seller_name = _resolve_seller(request, actor)
    recorded_by_user_id = actor.id if actor else sold_by_user_id

    def _attempt() -> Invoice:
        receipt_number = sequence_service.next_receipt_number()
        invoice = _build_invoice(
            request,
            receipt_number,
            sold_by_user_id=sold_by_user_id,
            seller_name=seller_name,
            customer_name=customer_name,
            recorded_by_user_id=recorded_by_user_id,
        )
        invoice_repository.add(invoice)
        db.session.commit()
        return invoice

    def _op() -> Invoice:
        try:
            return _attempt()
        except IntegrityError as exc:
            db.session.rollback()
            if not _is_receipt_collision(exc):
                raise
            logger.warning("Receipt number collision, retrying with a fresh number: %s", exc.orig)
            # The rollback undid the increment; burn the taken number for good
            sequence_service.next_receipt_number()
            db.session.commit()

        try:
            return _attempt()
        except IntegrityError as exc:
            db.session.rollback()
            if not _is_receipt_collision(exc):
                raise
            logger.error("Receipt number collided twice; sequence counter is not atomic: %s", exc.orig)
            raise ConflictError("Could not assign a unique receipt number") from exc

    invoice = run_with_retry(_op)

    logger.info(
        "Created invoice %s (%s, %d cents, balance %d)",
        invoice.receipt_number, invoice.payment_type,
        invoice.final_amount_cents, invoice.remaining_balance_cents,
    )
    activity_service.log_activity(
        actor=actor,
        action=activity_service.ACTION_INVOICE_CREATED,
        details=f"Created invoice {invoice.receipt_number} - Total: {cents_to_amount(invoice.final_amount_cents):.2f}",
        ip_address=ip_address,
    )
    return invoice


def get_invoice(invoice_id: int) -> Invoice:
    invoice = invoice_repository.get_by_id(invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def list_invoices(
    *,
    status: str | None = None,
    customer_name: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Invoice]:
    return invoice_repository.find(
        status=status,
        customer_name_contains=customer_name,
        start=start,
        end=end,
    )


def list_overdue_invoices(as_of: datetime | None = None) -> list[Invoice]:
    return invoice_repository.find_overdue(as_of or utcnow())


def update_invoice_metadata(
    invoice_id: int,
    payload: dict,
    *,
    actor: User | None = None,
    ip_address: str | None = None,
) -> Invoice:
    """
    Partial update of due_date, notes and customer_name.

    Any other key (items, totals, payments, receipt_number, ...) is rejected.
    Assigning a value equal to the stored one issues no write, so repeating
    the same update leaves the row untouched.
    """
    patch = validate_payload(model=Invoice, payload=payload, policy=INVOICE_METADATA_POLICY)

    def _op():
        invoice = invoice_repository.get_by_id(invoice_id, for_update=True)
        if not invoice:
            db.session.rollback()
            raise NotFoundError("Invoice not found")

        changed = [k for k, v in patch.items() if getattr(invoice, k) != v]
        for k in changed:
            setattr(invoice, k, patch[k])

        db.session.commit()
        return invoice, changed

    invoice, changed = run_with_retry(_op)

    logger.info("Updated invoice %s metadata: %s", invoice.receipt_number, ", ".join(changed) or "no changes")
    activity_service.log_activity(
        actor=actor,
        action=activity_service.ACTION_INVOICE_UPDATED,
        details=f"Updated invoice {invoice.receipt_number}" + (f" ({', '.join(sorted(changed))})" if changed else ""),
        ip_address=ip_address,
    )
    return invoice


def delete_invoice(
    invoice_id: int,
    *,
    actor: User | None = None,
    ip_address: str | None = None,
) -> None:
    """
    Hard delete an invoice with its lines and payments.

    Payments already taken are not reversed; the audit record keeps the
    receipt number, total and amount paid.
    """
    def _op():
        invoice = invoice_repository.get_by_id(invoice_id, for_update=True)
        if not invoice:
            db.session.rollback()
            raise NotFoundError("Invoice not found")

        summary = (
            f"Deleted invoice {invoice.receipt_number} - Total: {cents_to_amount(invoice.final_amount_cents):.2f}"
            f", Paid: {cents_to_amount(invoice.paid_cents):.2f}"
        )
        receipt_number = invoice.receipt_number
        invoice_repository.delete(invoice)
        db.session.commit()
        return receipt_number, summary

    receipt_number, summary = run_with_retry(_op)

    logger.info("Deleted invoice %s", receipt_number)
    activity_service.log_activity(
        actor=actor,
        action=activity_service.ACTION_INVOICE_DELETED,
        details=summary,
        ip_address=ip_address,
    )


def check_overdue_invoices(as_of: datetime | None = None) -> list[Invoice]:
    """
    Log and audit every overdue credit invoice.

    Writes one OVERDUE_ALERT activity entry per invoice under the "System"
    user. Returns the overdue invoices.
    """
    now = as_of or utcnow()
    overdue = list_overdue_invoices(now)

    if not overdue:
        logger.info("No overdue invoices")
        return overdue

    logger.warning("%d invoice(s) are overdue", len(overdue))
    for invoice in overdue:
        days_overdue = (now - invoice.due_date).days
        details = (
            f"Invoice {invoice.receipt_number} is {days_overdue} days overdue."
            f" Outstanding: {cents_to_amount(invoice.remaining_balance_cents):.2f}"
        )
        logger.warning("%s (customer %s)", details, invoice.customer_name)
        activity_service.log_activity(
            actor=None,
            action=activity_service.ACTION_OVERDUE_ALERT,
            details=details,
            ip_address="System",
        )
    return overdue
