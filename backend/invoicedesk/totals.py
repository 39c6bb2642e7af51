# Overview: Pure money computation for invoice line items and aggregate totals.

"""
Invoice totals

All amounts are integer cents. Request values arrive as decimal currency
amounts and are rounded half-up to 2 places exactly once, when they are
converted to cents; every figure derived from them is exact integer math,
so repeated reads never accumulate floating-point drift.

Per line:
    line_total   = unit_price * quantity
    final_amount = line_total - discount
    profit       = final_amount - cost_price * quantity

Aggregate:
    total_amount   = sum(line_total)
    total_discount = sum(discount)
    final_amount   = sum(final_amount)   (== total_amount - total_discount)
    total_profit   = sum(profit)
    total_items    = sum(quantity)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from .validation import MAX_INTEGER, MAX_INVOICE_CENTS, MAX_PRICE_CENTS, MAX_QUANTITY, ValidationError

CENT = Decimal("0.01")


def to_cents(value: Any, field: str, *, maximum: int = MAX_INVOICE_CENTS, clamp: bool = False) -> int:
    """
    Convert a decimal currency amount (int, float, or numeric string) to cents.

    Rounds half-up to 2 decimal places. Booleans, NaN and infinities are rejected.
    Amounts above `maximum` cents are rejected, or with clamp=True reduced to
    `maximum`; either way the result always fits an INTEGER column.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"{field} must be a finite number")
    if isinstance(value, (int, float)):
        raw = str(value)
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
    else:
        raise ValidationError(f"{field} must be a number")

    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    # Compared before quantizing: quantize fails once digits exceed the context precision
    limit = Decimal(maximum).scaleb(-2)
    if amount > limit:
        if clamp:
            return maximum
        raise ValidationError(f"{field} cannot exceed {maximum / 100:,.2f}")
    if amount < -limit:
        raise ValidationError(f"{field} is out of range")

    return int(amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100)


def cents_to_amount(cents: int | None) -> float | None:
    """Render cents as a currency amount with 2 decimal places."""
    if cents is None:
        return None
    return round(cents / 100, 2)


@dataclass(frozen=True)
class LineItem:
    """One validated invoice line; a snapshot of the product at sale time."""
    product_name: str
    quantity: int
    unit_price_cents: int
    discount_cents: int = 0
    cost_price_cents: int = 0
    product_id: int | None = None
    unit: str | None = None

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    @property
    def final_amount_cents(self) -> int:
        return self.line_total_cents - self.discount_cents

    @property
    def profit_cents(self) -> int:
        return self.final_amount_cents - self.cost_price_cents * self.quantity

    def validate(self, position: int) -> None:
        label = f"Item {position + 1}"
        if not self.product_name:
            raise ValidationError(f"{label}: product_name is required")
        if self.quantity < 1:
            raise ValidationError(f"{label}: quantity must be at least 1")
        if self.unit_price_cents < 0:
            raise ValidationError(f"{label}: unit_price must be >= 0")
        if self.discount_cents < 0:
            raise ValidationError(f"{label}: discount must be >= 0")
        if self.cost_price_cents < 0:
            raise ValidationError(f"{label}: cost_price must be >= 0")
        if self.quantity > MAX_QUANTITY:
            raise ValidationError(f"{label}: quantity cannot exceed {MAX_QUANTITY}")
        if self.unit_price_cents > MAX_PRICE_CENTS:
            raise ValidationError(f"{label}: unit_price cannot exceed {MAX_PRICE_CENTS / 100:,.2f}")
        if self.cost_price_cents > MAX_PRICE_CENTS:
            raise ValidationError(f"{label}: cost_price cannot exceed {MAX_PRICE_CENTS / 100:,.2f}")
        if self.line_total_cents > MAX_INVOICE_CENTS:
            raise ValidationError(f"{label}: line total cannot exceed {MAX_INVOICE_CENTS / 100:,.2f}")
        if self.cost_price_cents * self.quantity > MAX_INVOICE_CENTS:
            raise ValidationError(f"{label}: line cost cannot exceed {MAX_INVOICE_CENTS / 100:,.2f}")
        if self.discount_cents > self.line_total_cents:
            raise ValidationError(f"{label}: discount cannot exceed the line total")


@dataclass(frozen=True)
class InvoiceTotals:
    total_amount_cents: int
    total_discount_cents: int
    final_amount_cents: int
    total_profit_cents: int
    total_items: int

    def to_dict(self) -> dict:
        return {
            "total_amount": cents_to_amount(self.total_amount_cents),
            "total_discount": cents_to_amount(self.total_discount_cents),
            "final_amount": cents_to_amount(self.final_amount_cents),
            "total_profit": cents_to_amount(self.total_profit_cents),
            "total_items": self.total_items,
        }


def compute_totals(items: Iterable[LineItem]) -> InvoiceTotals:
    """
    Validate every line and aggregate the invoice totals.

    Raises ValidationError on an empty list, on the first invalid line, or
    when an aggregate would not fit its column.
    """
    items = list(items)
    if not items:
        raise ValidationError("Invoice must include at least one item")

    for position, item in enumerate(items):
        item.validate(position)

    totals = InvoiceTotals(
        total_amount_cents=sum(i.line_total_cents for i in items),
        total_discount_cents=sum(i.discount_cents for i in items),
        final_amount_cents=sum(i.final_amount_cents for i in items),
        total_profit_cents=sum(i.profit_cents for i in items),
        total_items=sum(i.quantity for i in items),
    )

    # Bounding total and cost bounds every aggregate, profit included
    limit = f"{MAX_INVOICE_CENTS / 100:,.2f}"
    if totals.total_amount_cents > MAX_INVOICE_CENTS:
        raise ValidationError(f"Invoice total cannot exceed {limit}")
    if sum(i.cost_price_cents * i.quantity for i in items) > MAX_INVOICE_CENTS:
        raise ValidationError(f"Invoice cost cannot exceed {limit}")
    if totals.total_items > MAX_INTEGER:
        raise ValidationError("Invoice item count is out of range")

    return totals
