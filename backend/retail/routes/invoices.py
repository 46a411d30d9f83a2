# Overview: Flask API routes for invoices issued from completed sales.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_permission, require_tenant
from ..errors import ValidationError
from ..repositories import InvoiceFilter
from ..services import invoice_service
from ..time_utils import parse_iso_datetime
from ..validation import (
    datetime_arg,
    int_arg,
    json_payload,
    optional_str,
    pagination_args,
    require_int,
)

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _invoice_response(invoice, status: int = 200):
    return jsonify({"invoice": invoice.to_dict()}), status


def _due_date(data: dict):
    raw = optional_str(data, "due_date")
    if raw is None:
        return None
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError("due_date must be an ISO-8601 datetime")


@invoices_bp.get("")
@require_tenant
@require_permission("VIEW_SALES")
def list_invoices_route():
    filters = InvoiceFilter(
        status=request.args.get("status") or None,
        payment_method=request.args.get("payment_method") or None,
        customer=request.args.get("customer") or None,
        sale_id=int_arg("sale_id"),
        created_by_user_id=int_arg("created_by"),
        created_from=datetime_arg("from"),
        created_to=datetime_arg("to"),
        due_from=datetime_arg("due_from"),
        due_to=datetime_arg("due_to"),
    )
    page = invoice_service.list_invoices(g.tenant_id, filters, pagination_args())
    return jsonify(page.to_dict(lambda invoice: invoice.to_dict(include_items=False))), 200


@invoices_bp.get("/overdue")
@require_tenant
@require_permission("VIEW_SALES")
def list_overdue_invoices_route():
    page = invoice_service.list_overdue_invoices(g.tenant_id, pagination_args())
    return jsonify(page.to_dict(lambda invoice: invoice.to_dict(include_items=False))), 200


@invoices_bp.post("")
@require_tenant
@require_permission("PROCESS_SALES")
def create_invoice_route():
    """
    Create an invoice for a completed sale.

    Body: sale_id, [customer_address, due_date, notes]
    Returns the existing invoice if the sale already has one.
    """
    data = json_payload()
    invoice = invoice_service.create_invoice(
        g.tenant_id,
        require_int(data, "sale_id"),
        customer_address=optional_str(data, "customer_address"),
        due_date=_due_date(data),
        notes=optional_str(data, "notes"),
        user_id=g.user_id,
    )
    return _invoice_response(invoice, 201)


@invoices_bp.get("/<int:invoice_id>")
@require_tenant
@require_permission("VIEW_SALES")
def get_invoice_route(invoice_id: int):
    return _invoice_response(invoice_service.get_invoice(g.tenant_id, invoice_id))


@invoices_bp.get("/by-number/<invoice_number>")
@require_tenant
@require_permission("VIEW_SALES")
def get_invoice_by_number_route(invoice_number: str):
    return _invoice_response(invoice_service.get_invoice_by_number(g.tenant_id, invoice_number))


@invoices_bp.post("/<int:invoice_id>/generate")
@require_tenant
@require_permission("PROCESS_SALES")
def generate_invoice_route(invoice_id: int):
    return _invoice_response(invoice_service.mark_invoice_generated(g.tenant_id, invoice_id, user_id=g.user_id))


@invoices_bp.post("/<int:invoice_id>/send")
@require_tenant
@require_permission("PROCESS_SALES")
def send_invoice_route(invoice_id: int):
    return _invoice_response(invoice_service.mark_invoice_sent(g.tenant_id, invoice_id, user_id=g.user_id))


@invoices_bp.post("/<int:invoice_id>/pay")
@require_tenant
@require_permission("MANAGE_INVOICES")
def pay_invoice_route(invoice_id: int):
    return _invoice_response(invoice_service.mark_invoice_paid(g.tenant_id, invoice_id, user_id=g.user_id))


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_tenant
@require_permission("MANAGE_INVOICES")
def cancel_invoice_route(invoice_id: int):
    return _invoice_response(invoice_service.cancel_invoice(g.tenant_id, invoice_id, user_id=g.user_id))
