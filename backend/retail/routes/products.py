# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_permission, require_tenant
from ..repositories import ProductFilter
from ..services import products_service
from ..validation import json_payload, optional_int, optional_str, pagination_args, require_int, require_str

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_tenant
@require_permission("VIEW_PRODUCTS")
def list_products_route():
    filters = ProductFilter(
        status=request.args.get("status") or None,
        category=request.args.get("category") or None,
        search=request.args.get("search") or None,
    )
    page = products_service.list_products(g.tenant_id, filters, pagination_args())
    return jsonify(page.to_dict()), 200


@products_bp.post("")
@require_tenant
@require_permission("MANAGE_PRODUCTS")
def create_product_route():
    """
    Create a product with its stock record.

    Body: sku, name, category, price_cents, [cost_cents, description, unit,
    initial_quantity, reorder_level]
    """
    data = json_payload()
    product = products_service.create_product(
        g.tenant_id,
        sku=require_str(data, "sku"),
        name=require_str(data, "name"),
        category=require_str(data, "category"),
        price_cents=require_int(data, "price_cents"),
        cost_cents=optional_int(data, "cost_cents") or 0,
        description=optional_str(data, "description"),
        unit=optional_str(data, "unit") or "pcs",
        initial_quantity=optional_int(data, "initial_quantity") or 0,
        reorder_level=optional_int(data, "reorder_level") or 0,
        user_id=g.user_id,
    )
    return jsonify({"product": product.to_dict(), "stock": product.stock.to_dict()}), 201


@products_bp.get("/<int:product_id>")
@require_tenant
@require_permission("VIEW_PRODUCTS")
def get_product_route(product_id: int):
    product = products_service.get_product(g.tenant_id, product_id)
    return jsonify({"product": product.to_dict()}), 200


@products_bp.patch("/<int:product_id>")
@require_tenant
@require_permission("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    product = products_service.update_product(g.tenant_id, product_id, json_payload(), user_id=g.user_id)
    return jsonify({"product": product.to_dict()}), 200


@products_bp.post("/<int:product_id>/status")
@require_tenant
@require_permission("MANAGE_PRODUCTS")
def change_product_status_route(product_id: int):
    data = json_payload()
    product = products_service.change_product_status(
        g.tenant_id, product_id, require_str(data, "status"), user_id=g.user_id
    )
    return jsonify({"product": product.to_dict()}), 200
