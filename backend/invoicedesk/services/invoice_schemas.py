# Overview: Boundary parsing of loosely-typed invoice JSON into strict request objects.

"""
Every "is this a number / is this missing" check for invoice input lives
here. Services receive only CreateInvoiceRequest / PaymentRequest objects
whose fields are already typed, rounded to cents, and range-checked.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..models.invoices import PAYMENT_TYPE_CREDIT, VALID_PAYMENT_TYPES
from ..totals import InvoiceTotals, LineItem, compute_totals, to_cents
from ..validation import MAX_INTEGER, MAX_PRICE_CENTS, MAX_QUANTITY, ValidationError
from invoicedesk.time_utils import parse_iso_datetime

MAX_NOTE_LENGTH = 255
MAX_IDEMPOTENCY_KEY_LENGTH = 64
TOTALS_TOLERANCE_CENTS = 1


@dataclass(frozen=True)
class PaymentRequest:
    amount_cents: int
    note: str | None = None
    idempotency_key: str | None = None


@dataclass
class CreateInvoiceRequest:
    items: list[LineItem]
    totals: InvoiceTotals
    payment_type: str = PAYMENT_TYPE_CREDIT
    customer_name: str | None = None
    sale_date: datetime | None = None
    sold_by_user_id: int | None = None
    seller_name: str | None = None
    due_date: datetime | None = None
    notes: str | None = None
    initial_payments: list[PaymentRequest] = field(default_factory=list)


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _to_int(value: Any, field_name: str, maximum: int = MAX_INTEGER) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str) and value.strip().lstrip("-").isdecimal():
        text = value.strip()
        # int() refuses very long digit strings
        if len(text) > 20:
            raise ValidationError(f"{field_name} cannot exceed {maximum}")
        number = int(text)
    else:
        raise ValidationError(f"{field_name} must be an integer")

    if abs(number) > maximum:
        raise ValidationError(f"{field_name} cannot exceed {maximum}")
    return number


def _to_optional_int(value: Any, field_name: str) -> int | None:
    if value is None or value == "":
        return None
    return _to_int(value, field_name)


def _to_datetime(value: Any, field_name: str) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime")


def _to_note(value: Any) -> str | None:
    note = _to_text(value)
    if note and len(note) > MAX_NOTE_LENGTH:
        raise ValidationError(f"note exceeds max length {MAX_NOTE_LENGTH}")
    return note


def parse_line_item(raw: Any, position: int) -> LineItem:
    label = f"Item {position + 1}"
    if not isinstance(raw, dict):
        raise ValidationError(f"{label}: must be an object")

    if "unit_price" not in raw:
        raise ValidationError(f"{label}: unit_price is required")
    if "quantity" not in raw:
        raise ValidationError(f"{label}: quantity is required")

    discount = raw.get("discount")
    cost_price = raw.get("cost_price")

    return LineItem(
        product_id=_to_optional_int(raw.get("product_id"), f"{label}: product_id"),
        product_name=_to_text(raw.get("product_name")) or "",
        quantity=_to_int(raw.get("quantity"), f"{label}: quantity", MAX_QUANTITY),
        unit_price_cents=to_cents(raw.get("unit_price"), f"{label}: unit_price", maximum=MAX_PRICE_CENTS),
        discount_cents=0 if discount in (None, "") else to_cents(discount, f"{label}: discount"),
        cost_price_cents=0 if cost_price in (None, "") else to_cents(cost_price, f"{label}: cost_price", maximum=MAX_PRICE_CENTS),
        unit=_to_text(raw.get("unit")),
    )


def parse_payment(payload: Any, idempotency_key: str | None = None) -> PaymentRequest:
    """
    Parse {amount, note?, idempotency_key?}. amount must be a positive, finite
    number that is at least one cent after rounding.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    try:
        amount_cents = to_cents(payload.get("amount"), "amount", clamp=True)
    except ValidationError:
        raise ValidationError("Invalid payment amount")
    if amount_cents <= 0:
        raise ValidationError("Invalid payment amount")

    key = _to_text(idempotency_key) or _to_text(payload.get("idempotency_key"))
    if key and len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValidationError(f"idempotency_key exceeds max length {MAX_IDEMPOTENCY_KEY_LENGTH}")

    return PaymentRequest(amount_cents=amount_cents, note=_to_note(payload.get("note")), idempotency_key=key)


def _check_client_totals(raw_totals: Any, totals: InvoiceTotals) -> None:
    """Client totals are optional, but when sent they must agree with the lines."""
    if not isinstance(raw_totals, dict):
        raise ValidationError("Invoice totals must be an object")
    if "final_amount" not in raw_totals:
        raise ValidationError("Invoice totals must include numeric final_amount")
    try:
        claimed = to_cents(raw_totals["final_amount"], "totals.final_amount", clamp=True)
    except ValidationError:
        raise ValidationError("Invoice totals must include numeric final_amount")
    if abs(claimed - totals.final_amount_cents) > TOTALS_TOLERANCE_CENTS:
        raise ValidationError("Invoice totals do not match the line items")


def parse_create_invoice(payload: Any) -> CreateInvoiceRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Invoice must include at least one item")

    items = [parse_line_item(raw, position) for position, raw in enumerate(raw_items)]
    totals = compute_totals(items)

    if payload.get("totals") is not None:
        _check_client_totals(payload["totals"], totals)

    payment_type = _to_text(payload.get("payment_type")) or PAYMENT_TYPE_CREDIT
    payment_type = payment_type.lower()
    if payment_type not in VALID_PAYMENT_TYPES:
        raise ValidationError(f"payment_type must be one of {', '.join(VALID_PAYMENT_TYPES)}")

    raw_payments = payload.get("payments") or []
    if not isinstance(raw_payments, list):
        raise ValidationError("payments must be a list")
    if raw_payments and payment_type != PAYMENT_TYPE_CREDIT:
        raise ValidationError("Cash invoices are settled at creation and cannot carry payments")

    customer_name = _to_text(payload.get("customer_name"))
    if customer_name and len(customer_name) > 255:
        raise ValidationError("customer_name exceeds max length 255")

    return CreateInvoiceRequest(
        items=items,
        totals=totals,
        payment_type=payment_type,
        customer_name=customer_name,
        sale_date=_to_datetime(payload.get("sale_date"), "sale_date"),
        sold_by_user_id=_to_optional_int(payload.get("sold_by"), "sold_by"),
        seller_name=_to_text(payload.get("seller_name")),
        due_date=_to_datetime(payload.get("due_date"), "due_date"),
        notes=_to_text(payload.get("notes")),
        initial_payments=[parse_payment(raw) for raw in raw_payments],
    )
