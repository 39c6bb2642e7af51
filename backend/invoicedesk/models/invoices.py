from __future__ import annotations

from ..extensions import db
from invoicedesk.time_utils import to_utc_z
from invoicedesk.totals import InvoiceTotals, cents_to_amount

PAYMENT_TYPE_CASH = "cash"
PAYMENT_TYPE_CREDIT = "credit"
VALID_PAYMENT_TYPES = (PAYMENT_TYPE_CASH, PAYMENT_TYPE_CREDIT)

STATUS_PENDING = "pending"
STATUS_PAID = "paid"
VALID_STATUSES = (STATUS_PENDING, STATUS_PAID)


class Invoice(db.Model):
    """
    Invoice aggregate root.

    Line items and totals are written once at creation. After that only
    customer_name, due_date, notes (metadata) and the payment triple
    (remaining_balance_cents, payments, status) change.

    Invariants:
    - 0 <= remaining_balance_cents <= final_amount_cents
    - remaining_balance_cents == final_amount_cents - sum(payments.amount_cents)
    - status == "paid" iff remaining_balance_cents == 0
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_invoices_receipt_number"),
        db.CheckConstraint("remaining_balance_cents >= 0", name="ck_invoices_balance_non_negative"),
        db.CheckConstraint("remaining_balance_cents <= final_amount_cents", name="ck_invoices_balance_within_total"),
        db.CheckConstraint("payment_type IN ('cash', 'credit')", name="ck_invoices_payment_type"),
        db.CheckConstraint("status IN ('pending', 'paid')", name="ck_invoices_status"),
        db.Index("ix_invoices_sale_date", "sale_date"),
        db.Index("ix_invoices_status_due_date", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable receipt number (e.g., "INV-2025-0000042")
    receipt_number = db.Column(db.String(32), nullable=False)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False)

    # Seller snapshot (not a live reference for display)
    sold_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    seller_name = db.Column(db.String(128), nullable=True)

    customer_name = db.Column(db.String(255), nullable=False, default="Walk-in", index=True)
    payment_type = db.Column(db.String(16), nullable=False, default=PAYMENT_TYPE_CREDIT)
    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)

    # Totals (all amounts in cents), computed once from lines
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_profit_cents = db.Column(db.Integer, nullable=False, default=0)
    total_items = db.Column(db.Integer, nullable=False, default=0)

    remaining_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    # Optimistic lock: concurrent writers on one invoice fail with StaleDataError
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sold_by = db.relationship("User", foreign_keys=[sold_by_user_id])
    lines = db.relationship(
        "InvoiceLine",
        back_populates="invoice",
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    payments = db.relationship(
        "InvoicePayment",
        back_populates="invoice",
        order_by="InvoicePayment.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def paid_cents(self) -> int:
        return sum(p.amount_cents for p in self.payments)

    def totals(self) -> InvoiceTotals:
        return InvoiceTotals(
            total_amount_cents=self.total_amount_cents,
            total_discount_cents=self.total_discount_cents,
            final_amount_cents=self.final_amount_cents,
            total_profit_cents=self.total_profit_cents,
            total_items=self.total_items,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "items": [line.to_dict() for line in self.lines],
            "totals": self.totals().to_dict(),
            "sale_date": to_utc_z(self.sale_date),
            "sold_by": self.sold_by.to_summary() if self.sold_by else None,
            "seller_name": self.seller_name,
            "customer_name": self.customer_name,
            "payment_type": self.payment_type,
            "status": self.status,
            "remaining_balance": cents_to_amount(self.remaining_balance_cents),
            "payments": [p.to_dict() for p in self.payments],
            "due_date": to_utc_z(self.due_date) if self.due_date else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InvoiceLine(db.Model):
    """Product snapshot on an invoice. Never edited after creation."""
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "position", name="uq_invoice_lines_position"),
        db.CheckConstraint("quantity >= 1", name="ck_invoice_lines_quantity"),
        db.CheckConstraint("final_amount_cents >= 0", name="ck_invoice_lines_final_amount"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    # Catalog reference is informational only; the catalog lives elsewhere
    product_id = db.Column(db.Integer, nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(32), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_cents = db.Column(db.Integer, nullable=False)

    invoice = db.relationship("Invoice", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": cents_to_amount(self.unit_price_cents),
            "discount": cents_to_amount(self.discount_cents),
            "cost_price": cents_to_amount(self.cost_price_cents),
            "final_amount": cents_to_amount(self.final_amount_cents),
            "unit": self.unit,
        }


class InvoicePayment(db.Model):
    """
    Append-only payment ledger entry.

    amount_cents is the effective (capped) amount, never more than the
    balance owed when it was recorded.
    """
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "idempotency_key", name="uq_invoice_payments_idempotency"),
        db.CheckConstraint("amount_cents > 0", name="ck_invoice_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)
    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)

    # Client-supplied key; a replay with the same key is not applied twice
    idempotency_key = db.Column(db.String(64), nullable=True)

    invoice = db.relationship("Invoice", back_populates="payments")
    recorded_by = db.relationship("User", foreign_keys=[recorded_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": cents_to_amount(self.amount_cents),
            "date": to_utc_z(self.paid_at),
            "recorded_by": self.recorded_by.to_summary() if self.recorded_by else None,
            "note": self.note,
        }


class SequenceCounter(db.Model):
    """
    Atomic named counters (e.g. "invoice-2025").

    Receipt numbers must never repeat, even under concurrent creation.
    Counters for past years are kept, never deleted.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_sequence_counters_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), nullable=False)
    seq = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
