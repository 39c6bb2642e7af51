"""
Invoice lifecycle service tests.

Verifies:
- Credit and cash creation rules (balance, status, settlement entry)
- Receipt-number collision retry and the ConflictError after a second collision
- Metadata updates: allowlist, clearing, no drift on repeat
- Hard delete and overdue tracking
- Audit records are written and never fail the primary operation
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import invoice_payload
from invoicedesk.models import ActivityLog, Invoice, InvoiceLine, InvoicePayment
from invoicedesk.models.invoices import STATUS_PAID, STATUS_PENDING
from invoicedesk.services import activity_service, invoice_service, sequence_service
from invoicedesk.services.invoice_schemas import parse_create_invoice, parse_payment
from invoicedesk.services.payment_service import record_payment
from invoicedesk.time_utils import utcnow
from invoicedesk.validation import ConflictError, NotFoundError, ValidationError


def create(actor, **overrides):
    return invoice_service.create_invoice(parse_create_invoice(invoice_payload(**overrides)), actor=actor)


def insert_raw_invoice(db_session, receipt_number):
    db_session.add(Invoice(
        receipt_number=receipt_number,
        sale_date=utcnow(),
        customer_name="Legacy import",
        payment_type="cash",
        status=STATUS_PAID,
        final_amount_cents=0,
        remaining_balance_cents=0,
    ))
    db_session.commit()


class TestCreateInvoice:

    def test_credit_invoice_starts_pending(self, db_session, manager):
        invoice = create(manager)

        assert invoice.final_amount_cents == 3000
        assert invoice.remaining_balance_cents == 3000
        assert invoice.status == STATUS_PENDING
        assert invoice.payments == []
        assert invoice.receipt_number == f"INV-{utcnow().year}-0000001"

    def test_discount_totals(self, db_session, manager):
        invoice = create(manager, items=[
            {"product_name": "Paint", "quantity": 2, "unit_price": 50, "discount": 20},
        ])

        assert invoice.total_amount_cents == 10000
        assert invoice.total_discount_cents == 2000
        assert invoice.final_amount_cents == 8000

    def test_stored_totals_match_computed(self, db_session, manager):
        request = parse_create_invoice(invoice_payload(items=[
            {"product_name": "Paint", "quantity": 2, "unit_price": 50, "discount": 20, "cost_price": 30},
            {"product_name": "Brush", "quantity": 1, "unit_price": 5},
        ]))
        invoice = invoice_service.create_invoice(request, actor=manager)

        assert invoice.totals() == request.totals
        assert invoice.to_dict()["totals"] == request.totals.to_dict()

    def test_lines_are_snapshotted_in_order(self, db_session, manager):
        invoice = create(manager, items=[
            {"product_name": "Cement", "quantity": 1, "unit_price": 10, "product_id": 7, "unit": "bag"},
            {"product_name": "Sand", "quantity": 2, "unit_price": "2.50"},
        ])

        lines = db_session.query(InvoiceLine).filter_by(invoice_id=invoice.id).order_by(InvoiceLine.position).all()
        assert [line.product_name for line in lines] == ["Cement", "Sand"]
        assert lines[0].product_id == 7
        assert lines[0].unit == "bag"
        assert lines[1].final_amount_cents == 500

    def test_cash_invoice_is_settled_at_creation(self, db_session, manager):
        invoice = create(manager, payment_type="cash")

        assert invoice.remaining_balance_cents == 0
        assert invoice.status == STATUS_PAID
        assert len(invoice.payments) == 1
        assert invoice.payments[0].amount_cents == invoice.final_amount_cents
        assert invoice.payments[0].note == invoice_service.CASH_SETTLEMENT_NOTE

    def test_zero_total_invoice_is_paid_without_payments(self, db_session, manager):
        invoice = create(manager, items=[
            {"product_name": "Sample", "quantity": 1, "unit_price": 0},
        ])

        assert invoice.final_amount_cents == 0
        assert invoice.status == STATUS_PAID
        assert invoice.payments == []

    def test_initial_payments_are_capped(self, db_session, manager):
        invoice = create(manager, payments=[{"amount": 20}, {"amount": 25}, {"amount": 5}])

        assert [p.amount_cents for p in invoice.payments] == [2000, 1000]
        assert invoice.remaining_balance_cents == 0
        assert invoice.status == STATUS_PAID

    def test_partial_initial_payment(self, db_session, manager):
        invoice = create(manager, payments=[{"amount": 12.5, "note": "deposit"}])

        assert invoice.remaining_balance_cents == 1750
        assert invoice.status == STATUS_PENDING
        assert invoice.payments[0].note == "deposit"
        assert invoice.payments[0].recorded_by_user_id == manager.id

    def test_defaults_customer_and_seller(self, db_session, manager):
        payload = invoice_payload()
        del payload["customer_name"]
        invoice = invoice_service.create_invoice(parse_create_invoice(payload), actor=manager)

        assert invoice.customer_name == "Walk-in"
        assert invoice.sold_by_user_id == manager.id
        assert invoice.seller_name == manager.name

    def test_sold_by_another_user(self, db_session, manager, ceo):
        invoice = create(manager, sold_by=ceo.id)

        assert invoice.sold_by_user_id == ceo.id
        assert invoice.seller_name == ceo.name

    def test_unknown_sold_by_rejected(self, db_session, manager):
        with pytest.raises(ValidationError, match="sold_by user not found"):
            create(manager, sold_by=9999)

    def test_explicit_sale_date_kept(self, db_session, manager):
        invoice = create(manager, sale_date="2025-03-01T10:00:00Z")
        assert invoice.sale_date.isoformat() == "2025-03-01T10:00:00"

    def test_sequential_receipts_increase(self, db_session, manager):
        first = create(manager)
        second = create(manager)

        assert int(second.receipt_number[-7:]) == int(first.receipt_number[-7:]) + 1

    def test_collision_retried_with_fresh_number(self, db_session, manager):
        year = utcnow().year
        insert_raw_invoice(db_session, sequence_service.format_receipt_number(year, 1))

        invoice = create(manager)

        assert invoice.receipt_number == sequence_service.format_receipt_number(year, 2)
        assert db_session.query(Invoice).count() == 2

    def test_second_collision_raises_conflict(self, db_session, manager):
        year = utcnow().year
        insert_raw_invoice(db_session, sequence_service.format_receipt_number(year, 1))
        insert_raw_invoice(db_session, sequence_service.format_receipt_number(year, 2))

        with pytest.raises(ConflictError):
            create(manager)

        assert db_session.query(Invoice).count() == 2

    def test_writes_audit_record(self, db_session, manager):
        invoice = create(manager)

        entry = db_session.query(ActivityLog).filter_by(action=activity_service.ACTION_INVOICE_CREATED).one()
        assert entry.user_id == manager.id
        assert entry.user_name == manager.name
        assert entry.details == f"Created invoice {invoice.receipt_number} - Total: 30.00"

    def test_audit_failure_does_not_fail_creation(self, db_session, manager, monkeypatch):
        def broken_log(**kwargs):
            raise SQLAlchemyError("audit store down")

        monkeypatch.setattr(activity_service, "ActivityLog", broken_log)

        invoice = create(manager)

        assert db_session.query(Invoice).filter_by(id=invoice.id).count() == 1
        assert db_session.query(ActivityLog).count() == 0


class TestUpdateMetadata:

    def test_updates_allowed_fields(self, db_session, manager):
        invoice = create(manager)

        updated = invoice_service.update_invoice_metadata(invoice.id, {
            "due_date": "2030-01-31",
            "notes": "  call before delivery ",
            "customer_name": "Efua Asante",
        }, actor=manager)

        assert updated.due_date.date().isoformat() == "2030-01-31"
        assert updated.notes == "call before delivery"
        assert updated.customer_name == "Efua Asante"

    def test_only_provided_fields_change(self, db_session, manager):
        invoice = create(manager, due_date="2030-01-31", customer_name="Kofi Mensah")

        updated = invoice_service.update_invoice_metadata(invoice.id, {"notes": "second visit"}, actor=manager)

        assert updated.notes == "second visit"
        assert updated.customer_name == "Kofi Mensah"
        assert updated.due_date.date().isoformat() == "2030-01-31"

    def test_clears_due_date(self, db_session, manager):
        invoice = create(manager, due_date="2030-01-31")

        updated = invoice_service.update_invoice_metadata(invoice.id, {"due_date": None}, actor=manager)
        assert updated.due_date is None

    @pytest.mark.parametrize("field", ["items", "totals", "payments", "receipt_number", "remaining_balance_cents", "status"])
    def test_rejects_other_fields(self, db_session, manager, field):
        invoice = create(manager)

        with pytest.raises(ValidationError, match=f"Field not allowed: {field}"):
            invoice_service.update_invoice_metadata(invoice.id, {field: "x"}, actor=manager)

    def test_rejects_blank_customer_name(self, db_session, manager):
        invoice = create(manager)

        with pytest.raises(ValidationError, match="customer_name cannot be blank"):
            invoice_service.update_invoice_metadata(invoice.id, {"customer_name": "  "}, actor=manager)

    def test_missing_invoice(self, db_session, manager):
        with pytest.raises(NotFoundError, match="Invoice not found"):
            invoice_service.update_invoice_metadata(12345, {"notes": "x"}, actor=manager)

    def test_repeated_update_does_not_drift(self, db_session, manager):
        invoice = create(manager)
        patch = {"due_date": "2030-01-31T12:00:00Z", "notes": "n", "customer_name": "C"}

        first = invoice_service.update_invoice_metadata(invoice.id, patch, actor=manager)
        first_state = (first.due_date, first.notes, first.customer_name, first.version_id)

        second = invoice_service.update_invoice_metadata(invoice.id, patch, actor=manager)
        second_state = (second.due_date, second.notes, second.customer_name, second.version_id)

        assert first_state == second_state

    def test_update_leaves_payments_alone(self, db_session, manager):
        invoice = create(manager, payments=[{"amount": 10}])

        updated = invoice_service.update_invoice_metadata(invoice.id, {"notes": "x"}, actor=manager)

        assert updated.remaining_balance_cents == 2000
        assert len(updated.payments) == 1

    def test_writes_audit_record(self, db_session, manager):
        invoice = create(manager)
        invoice_service.update_invoice_metadata(invoice.id, {"notes": "x"}, actor=manager)

        entry = db_session.query(ActivityLog).filter_by(action=activity_service.ACTION_INVOICE_UPDATED).one()
        assert invoice.receipt_number in entry.details


class TestDeleteInvoice:

    def test_deletes_invoice_lines_and_payments(self, db_session, ceo):
        invoice = create(ceo, payments=[{"amount": 10}])
        invoice_id = invoice.id

        invoice_service.delete_invoice(invoice_id, actor=ceo)

        assert db_session.query(Invoice).filter_by(id=invoice_id).count() == 0
        assert db_session.query(InvoiceLine).filter_by(invoice_id=invoice_id).count() == 0
        assert db_session.query(InvoicePayment).filter_by(invoice_id=invoice_id).count() == 0

    def test_audit_keeps_amount_paid(self, db_session, ceo):
        invoice = create(ceo, payments=[{"amount": 10}])
        receipt_number = invoice.receipt_number

        invoice_service.delete_invoice(invoice.id, actor=ceo)

        entry = db_session.query(ActivityLog).filter_by(action=activity_service.ACTION_INVOICE_DELETED).one()
        assert entry.details == f"Deleted invoice {receipt_number} - Total: 30.00, Paid: 10.00"

    def test_missing_invoice(self, db_session, ceo):
        with pytest.raises(NotFoundError):
            invoice_service.delete_invoice(12345, actor=ceo)

    def test_get_after_delete(self, db_session, ceo):
        invoice = create(ceo)
        invoice_id = invoice.id
        invoice_service.delete_invoice(invoice_id, actor=ceo)

        with pytest.raises(NotFoundError):
            invoice_service.get_invoice(invoice_id)


class TestListInvoices:

    def test_filters_and_order(self, db_session, manager):
        old = create(manager, customer_name="Abena Owusu", sale_date="2025-01-10T09:00:00Z")
        mid = create(manager, customer_name="Kwame Owusu", sale_date="2025-02-10T09:00:00Z", payment_type="cash")
        new = create(manager, customer_name="Esi Darko", sale_date="2025-03-10T09:00:00Z")

        all_ids = [inv.id for inv in invoice_service.list_invoices()]
        assert all_ids == [new.id, mid.id, old.id]

        owusu = invoice_service.list_invoices(customer_name="owusu")
        assert {inv.id for inv in owusu} == {old.id, mid.id}

        pending = invoice_service.list_invoices(status=STATUS_PENDING)
        assert {inv.id for inv in pending} == {old.id, new.id}

    def test_customer_filter_is_literal(self, db_session, manager):
        create(manager, customer_name="100% Hardware")
        create(manager, customer_name="Hardware 100")

        matches = invoice_service.list_invoices(customer_name="100%")
        assert [inv.customer_name for inv in matches] == ["100% Hardware"]


class TestOverdue:

    def test_only_unpaid_credit_invoices_past_due(self, db_session, manager):
        past = (utcnow() - timedelta(days=3)).isoformat()
        future = (utcnow() + timedelta(days=3)).isoformat()

        overdue = create(manager, due_date=past)
        create(manager, due_date=future)
        create(manager, due_date=past, payments=[{"amount": 30}])
        create(manager, due_date=past, payment_type="cash")
        create(manager)

        assert [inv.id for inv in invoice_service.list_overdue_invoices()] == [overdue.id]

    def test_check_overdue_writes_system_alerts(self, db_session, manager):
        overdue = create(manager, due_date=(utcnow() - timedelta(days=5, hours=1)).isoformat())

        found = invoice_service.check_overdue_invoices()

        assert [inv.id for inv in found] == [overdue.id]
        alert = db_session.query(ActivityLog).filter_by(action=activity_service.ACTION_OVERDUE_ALERT).one()
        assert alert.user_name == "System"
        assert alert.user_id is None
        assert alert.details == f"Invoice {overdue.receipt_number} is 5 days overdue. Outstanding: 30.00"

    def test_partially_paid_invoice_stays_overdue(self, db_session, manager):
        invoice = create(manager, due_date=(utcnow() - timedelta(days=1)).isoformat())
        record_payment(invoice.id, parse_payment({"amount": 10}), actor=manager)

        assert [inv.id for inv in invoice_service.list_overdue_invoices()] == [invoice.id]
