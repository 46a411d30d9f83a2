# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""Sales API routes with permission enforcement"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_permission, require_tenant
from ..errors import ValidationError
from ..repositories import SaleFilter
from ..services import sales_service
from ..validation import (
    datetime_arg,
    int_arg,
    json_payload,
    optional_int,
    optional_str,
    pagination_args,
    require_int,
    require_str,
)

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sale_response(sale, status: int = 200):
    return jsonify({"sale": sale.to_dict()}), status


@sales_bp.get("")
@require_tenant
@require_permission("VIEW_SALES")
def list_sales_route():
    filters = SaleFilter(
        status=request.args.get("status") or None,
        payment_method=request.args.get("payment_method") or None,
        customer=request.args.get("customer") or None,
        created_by_user_id=int_arg("created_by"),
        created_from=datetime_arg("from"),
        created_to=datetime_arg("to"),
    )
    page = sales_service.list_sales(g.tenant_id, filters, pagination_args())
    return jsonify(page.to_dict(lambda sale: sale.to_dict(include_items=False))), 200


@sales_bp.post("")
@require_tenant
@require_permission("PROCESS_SALES")
def create_sale_route():
    """
    Create new pending sale.

    Requires: PROCESS_SALES permission
    Available to: admin, manager, cashier
    """
    data = json_payload()
    sale = sales_service.create_sale(
        g.tenant_id,
        customer_name=optional_str(data, "customer_name"),
        customer_email=optional_str(data, "customer_email"),
        customer_phone=optional_str(data, "customer_phone"),
        user_id=g.user_id,
    )
    return _sale_response(sale, 201)


@sales_bp.get("/<int:sale_id>")
@require_tenant
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    return _sale_response(sales_service.get_sale(g.tenant_id, sale_id))


@sales_bp.get("/by-number/<sale_number>")
@require_tenant
@require_permission("VIEW_SALES")
def get_sale_by_number_route(sale_number: str):
    return _sale_response(sales_service.get_sale_by_number(g.tenant_id, sale_number))


@sales_bp.post("/<int:sale_id>/items")
@require_tenant
@require_permission("PROCESS_SALES")
def add_item_route(sale_id: int):
    data = json_payload()
    sale = sales_service.add_sale_item(
        g.tenant_id,
        sale_id,
        require_int(data, "product_id"),
        require_int(data, "quantity"),
        user_id=g.user_id,
    )
    return _sale_response(sale, 201)


@sales_bp.put("/<int:sale_id>/items/<int:product_id>")
@require_tenant
@require_permission("PROCESS_SALES")
def update_item_route(sale_id: int, product_id: int):
    data = json_payload()
    sale = sales_service.update_sale_item(
        g.tenant_id, sale_id, product_id, require_int(data, "quantity"), user_id=g.user_id
    )
    return _sale_response(sale)


@sales_bp.delete("/<int:sale_id>/items/<int:product_id>")
@require_tenant
@require_permission("PROCESS_SALES")
def remove_item_route(sale_id: int, product_id: int):
    sale = sales_service.remove_sale_item(g.tenant_id, sale_id, product_id, user_id=g.user_id)
    return _sale_response(sale)


@sales_bp.post("/<int:sale_id>/adjustments")
@require_tenant
@require_permission("PROCESS_SALES")
def adjust_sale_route(sale_id: int):
    data = json_payload()
    sale = sales_service.apply_sale_adjustments(
        g.tenant_id,
        sale_id,
        discount_cents=optional_int(data, "discount_cents"),
        tax_percent=_tax_percent(data),
        user_id=g.user_id,
    )
    return _sale_response(sale)


@sales_bp.post("/<int:sale_id>/complete")
@require_tenant
@require_permission("PROCESS_SALES")
def complete_sale_route(sale_id: int):
    """
    Complete sale - takes payment and decrements stock.

    Body: paid_cents, payment_method, [discount_cents, tax_percent, notes]
    """
    data = json_payload()
    sale = sales_service.complete_sale(
        g.tenant_id,
        sale_id,
        paid_cents=require_int(data, "paid_cents"),
        payment_method=require_str(data, "payment_method"),
        discount_cents=optional_int(data, "discount_cents"),
        tax_percent=_tax_percent(data),
        notes=optional_str(data, "notes"),
        user_id=g.user_id,
    )
    return _sale_response(sale)


@sales_bp.post("/<int:sale_id>/cancel")
@require_tenant
@require_permission("CANCEL_SALES")
def cancel_sale_route(sale_id: int):
    data = json_payload()
    sale = sales_service.cancel_sale(g.tenant_id, sale_id, reason=optional_str(data, "reason"), user_id=g.user_id)
    return _sale_response(sale)


def _tax_percent(data: dict):
    value = data.get("tax_percent")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError("tax_percent must be a number")
    return value
