# Overview: Flask API routes for stock levels and the movement ledger.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_permission, require_tenant
from ..repositories import MovementFilter, StockFilter
from ..services import stock_service
from ..validation import (
    bool_arg,
    datetime_arg,
    int_arg,
    json_payload,
    optional_str,
    pagination_args,
    require_int,
    require_str,
)

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("")
@require_tenant
@require_permission("VIEW_INVENTORY")
def list_stock_route():
    filters = StockFilter(
        low_stock_only=bool_arg("low_stock"),
        out_of_stock_only=bool_arg("out_of_stock"),
        search=request.args.get("search") or None,
    )
    page = stock_service.list_stock(g.tenant_id, filters, pagination_args())
    return jsonify(page.to_dict()), 200


@stock_bp.get("/low")
@require_tenant
@require_permission("VIEW_INVENTORY")
def list_low_stock_route():
    page = stock_service.list_low_stock(g.tenant_id, pagination_args())
    return jsonify(page.to_dict()), 200


@stock_bp.get("/movements")
@require_tenant
@require_permission("VIEW_INVENTORY")
def list_movements_route():
    filters = MovementFilter(
        product_id=int_arg("product_id"),
        type=request.args.get("type") or None,
        reason=request.args.get("reason") or None,
        reference=request.args.get("reference") or None,
        created_by_user_id=int_arg("created_by"),
        created_from=datetime_arg("from"),
        created_to=datetime_arg("to"),
    )
    page = stock_service.list_movements(g.tenant_id, filters, pagination_args())
    return jsonify(page.to_dict()), 200


@stock_bp.get("/<int:product_id>")
@require_tenant
@require_permission("VIEW_INVENTORY")
def get_stock_route(product_id: int):
    stock = stock_service.get_stock(g.tenant_id, product_id)
    return jsonify({"stock": stock.to_dict()}), 200


@stock_bp.post("/<int:product_id>/adjust")
@require_tenant
@require_permission("ADJUST_INVENTORY")
def adjust_stock_route(product_id: int):
    """
    Body: type ("in" | "out"), reason, quantity, [reference, notes]
    """
    data = json_payload()
    stock = stock_service.adjust_stock(
        g.tenant_id,
        product_id,
        movement_type=require_str(data, "type"),
        reason=require_str(data, "reason"),
        quantity=require_int(data, "quantity"),
        reference=optional_str(data, "reference"),
        notes=optional_str(data, "notes"),
        user_id=g.user_id,
    )
    return jsonify({"stock": stock.to_dict()}), 200


def _reservation_call(operation, product_id: int):
    data = json_payload()
    stock = operation(
        g.tenant_id,
        product_id,
        require_int(data, "quantity"),
        reference=require_str(data, "reference"),
        notes=optional_str(data, "notes"),
        user_id=g.user_id,
    )
    return jsonify({"stock": stock.to_dict()}), 200


@stock_bp.post("/<int:product_id>/reserve")
@require_tenant
@require_permission("RESERVE_INVENTORY")
def reserve_stock_route(product_id: int):
    return _reservation_call(stock_service.reserve_stock, product_id)


@stock_bp.post("/<int:product_id>/release")
@require_tenant
@require_permission("RESERVE_INVENTORY")
def release_stock_route(product_id: int):
    return _reservation_call(stock_service.release_reserved_stock, product_id)


@stock_bp.post("/<int:product_id>/confirm")
@require_tenant
@require_permission("RESERVE_INVENTORY")
def confirm_stock_route(product_id: int):
    return _reservation_call(stock_service.confirm_reserved_stock, product_id)


@stock_bp.put("/<int:product_id>/reorder-level")
@require_tenant
@require_permission("ADJUST_INVENTORY")
def update_reorder_level_route(product_id: int):
    data = json_payload()
    stock = stock_service.update_reorder_level(
        g.tenant_id, product_id, require_int(data, "reorder_level"), user_id=g.user_id
    )
    return jsonify({"stock": stock.to_dict()}), 200
