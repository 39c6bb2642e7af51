# Overview: Flask API routes for invoice operations; parses input and returns JSON responses.

"""
Invoice API Routes

DESIGN:
- Create credit/cash invoices with atomically minted receipt numbers
- List with status, customer and sale-date filters (newest sale first)
- Metadata updates limited to due_date, notes and customer_name
- Payments are capped at the remaining balance and may carry an
  Idempotency-Key so a retried request is not applied twice
- Hard delete is CEO-only

ERRORS:
- 400 ValidationError, 404 NotFoundError
- 500 ConflictError (receipt number collided twice) or unexpected failure
- 503 TransientError (storage busy; safe to retry)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_CEO, ROLE_MANAGER
from ..models.invoices import VALID_STATUSES
from ..services import invoice_service, payment_service
from ..services.concurrency import TransientError
from ..services.invoice_schemas import parse_create_invoice, parse_payment
from ..validation import ConflictError, NotFoundError, ValidationError
from invoicedesk.time_utils import parse_iso_datetime, parse_range_end


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _parse_date_arg(name: str, end: bool = False):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_range_end(raw) if end else parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")


def _transient_response(exc: TransientError):
    current_app.logger.warning("Invoice request hit a busy database: %s", exc)
    return jsonify({"error": str(exc)}), 503


@invoices_bp.get("")
@require_auth
@require_role(ROLE_CEO, ROLE_MANAGER)
def list_invoices_route():
    """
    List invoices, newest sale first.

    Query params:
    - status: pending | paid
    - customer_name: case-insensitive substring
    - start_date / end_date: inclusive bounds on sale_date; a bare end date
      covers that whole day
    """
    try:
        status = request.args.get("status") or None
        if status and status not in VALID_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(VALID_STATUSES)}")

        invoices = invoice_service.list_invoices(
            status=status,
            customer_name=(request.args.get("customer_name") or "").strip() or None,
            start=_parse_date_arg("start_date"),
            end=_parse_date_arg("end_date", end=True),
        )
        return jsonify([inv.to_dict() for inv in invoices]), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("")
@require_auth
@require_role(ROLE_CEO, ROLE_MANAGER)
def create_invoice_route():
    """
    Create an invoice.

    Request body:
    {
        "items": [{"product_name": "Cement", "quantity": 3, "unit_price": 10,
                   "discount": 0, "cost_price": 7, "product_id": 4, "unit": "bag"}],
        "payment_type": "credit",      (cash | credit, default credit)
        "customer_name": "Ama",        (optional, default Walk-in)
        "sale_date": "...",            (optional, default now)
        "sold_by": 2,                  (optional, default current user)
        "seller_name": "...",          (optional)
        "payments": [{"amount": 10}],  (optional, credit only)
        "due_date": "...", "notes": "...",
        "totals": {"final_amount": 30} (optional, checked against the items)
    }

    Returns:
        201: Created invoice
        400: Invalid input
    """
    try:
        create_request = parse_create_invoice(request.get_json(silent=True))
        invoice = invoice_service.create_invoice(
            create_request,
            actor=g.current_user,
            ip_address=request.remote_addr,
        )
        return jsonify(invoice.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except TransientError as e:
        return _transient_response(e)
    except ConflictError as e:
        current_app.logger.error("Invoice creation failed: %s", e)
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/overdue")
@require_auth
@require_role(ROLE_CEO, ROLE_MANAGER)
def list_overdue_invoices_route():
    """Credit invoices past their due date with money still owed, oldest due first."""
    try:
        invoices = invoice_service.list_overdue_invoices()
        return jsonify([inv.to_dict() for inv in invoices]), 200
    except Exception:
        current_app.logger.exception("Failed to list overdue invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_role(ROLE_CEO, ROLE_MANAGER)
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify(invoice.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>")
@require_auth
@require_role(ROLE_CEO, ROLE_MANAGER)
def update_invoice_route(invoice_id: int):
    """
    Update invoice metadata.

    Request body: any subset of {"due_date", "notes", "customer_name"}.
    due_date may be null or "" to clear it. Any other field is rejected.
    """
    try:
        invoice = invoice_service.update_invoice_metadata(
            invoice_id,
            request.get_json(silent=True),
            actor=g.current_user,
            ip_address=request.remote_addr,
        )
        return jsonify(invoice.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except TransientError as e:
        return _transient_response(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/payments")
@require_auth
@require_role(ROLE_CEO, ROLE_MANAGER)
def record_payment_route(invoice_id: int):
    """
    Record a payment.

    Request body: {"amount": 25.5, "note": "..."}
    Header (optional): Idempotency-Key: <client key>

    Amounts above the remaining balance are clamped to it.

    Returns:
        200: Updated invoice
        400: Invalid amount or invoice already paid
        404: Invoice not found
    """
    try:
        payment_request = parse_payment(
            request.get_json(silent=True),
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        invoice = payment_service.record_payment(
            invoice_id,
            payment_request,
            actor=g.current_user,
            ip_address=request.remote_addr,
        )
        return jsonify(invoice.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except TransientError as e:
        return _transient_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
@require_role(ROLE_CEO)
def delete_invoice_route(invoice_id: int):
    """Hard delete. Payments already taken are not reversed."""
    try:
        invoice_service.delete_invoice(
            invoice_id,
            actor=g.current_user,
            ip_address=request.remote_addr,
        )
        return jsonify({"message": "Invoice deleted successfully"}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except TransientError as e:
        return _transient_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete invoice")
        return jsonify({"error": "Internal server error"}), 500
