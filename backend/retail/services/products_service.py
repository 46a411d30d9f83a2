"""
Products Service with Multi-Tenant Support

MULTI-TENANT: All product operations are tenant-scoped.
- SKU is unique within a tenant (ConflictError otherwise)
- Each product gets exactly one Stock row, created in the same transaction
- Products are never deleted; DISCONTINUED is the terminal status
"""
from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import MovementReason, MovementType, Product, ProductStatus, Stock, StockMovement
from ..repositories import Page, Pagination, ProductFilter
from . import audit_service
from .subscription_service import require_capacity
from .unit_of_work import run_in_transaction, run_read

# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
MIN_SKU_LENGTH = 3

PRODUCT_MUTABLE_FIELDS = {"name", "description", "category", "unit", "price_cents", "cost_cents"}


def _clean_text(value, field: str, *, required: bool = True, max_length: int = 255):
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: value})
    value = value.strip()
    if required and not value:
        raise ValidationError(f"{field} is required")
    if len(value) > max_length:
        raise ValidationError(f"{field} is too long", details={field: value, "max_length": max_length})
    return value or None


def _validate_price(value, field: str, *, allow_zero: bool) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer number of cents", details={field: value})
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"Invalid {field}", details={field: value})
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum", details={field: value, "max": MAX_PRICE_CENTS})
    return value


def _validate_sku(sku) -> str:
    sku = _clean_text(sku, "sku", max_length=64)
    if len(sku) < MIN_SKU_LENGTH:
        raise ValidationError("SKU must be at least 3 characters", details={"sku": sku})
    return sku


def validate_product_patch(patch: dict) -> dict:
    """Validate client-writable product fields; unknown keys are rejected."""
    unknown = set(patch) - PRODUCT_MUTABLE_FIELDS
    if unknown:
        raise ValidationError("Unknown or read-only product fields", details={"fields": sorted(unknown)})

    cleaned = {}
    for key, value in patch.items():
        if key == "name":
            cleaned[key] = _clean_text(value, "name")
        elif key == "category":
            cleaned[key] = _clean_text(value, "category", max_length=120)
        elif key == "unit":
            cleaned[key] = _clean_text(value, "unit", max_length=16)
        elif key == "description":
            cleaned[key] = _clean_text(value, "description", required=False, max_length=4000)
        elif key == "price_cents":
            cleaned[key] = _validate_price(value, "price_cents", allow_zero=False)
        elif key == "cost_cents":
            cleaned[key] = _validate_price(value, "cost_cents", allow_zero=True)
    return cleaned


def create_product(
    tenant_id: int,
    *,
    sku: str,
    name: str,
    category: str,
    price_cents: int,
    cost_cents: int = 0,
    description: str | None = None,
    unit: str = "pcs",
    initial_quantity: int = 0,
    reorder_level: int = 0,
    user_id: int | None = None,
) -> Product:
    """
    Create a product and its stock record atomically.

    A positive initial_quantity is recorded as an in/purchase movement so the
    movement log accounts for every unit in stock.
    """
    sku = _validate_sku(sku)
    fields = validate_product_patch({
        "name": name,
        "category": category,
        "unit": unit,
        "description": description,
        "price_cents": price_cents,
        "cost_cents": cost_cents,
    })

    require_capacity(tenant_id, "products")

    def _work(uow):
        if uow.products.get_by_sku(sku) is not None:
            raise ConflictError("SKU already exists", details={"sku": sku})

        product = uow.products.create(Product(
            tenant_id=tenant_id,
            sku=sku,
            status=ProductStatus.ACTIVE.value,
            created_by_user_id=user_id,
            **fields,
        ))
        stock = uow.stocks.create(Stock.open(
            tenant_id=tenant_id,
            product_id=product.id,
            initial_qty=initial_quantity,
            reorder_level=reorder_level,
        ))
        if initial_quantity > 0:
            uow.movements.create(StockMovement.record(
                tenant_id=tenant_id,
                product_id=product.id,
                movement_type=MovementType.IN,
                reason=MovementReason.PURCHASE,
                quantity=initial_quantity,
                reference=sku,
                notes="Initial stock",
                created_by_user_id=user_id,
            ))
        return product, {**product.to_dict(), "stock": stock.snapshot()}

    product, snapshot = run_in_transaction(tenant_id, _work, action="create product")

    current_app.logger.info(
        "Product created: tenant_id=%s product_id=%s sku=%s initial_qty=%s user_id=%s",
        tenant_id, snapshot["id"], sku, initial_quantity, user_id,
    )
    audit_service.log_event(
        tenant_id=tenant_id,
        user_id=user_id,
        action="product.create",
        resource="product",
        resource_id=snapshot["id"],
        new_value=snapshot,
    )
    return product


def update_product(tenant_id: int, product_id: int, patch: dict, *, user_id: int | None = None) -> Product:
    """Patch product master data. Existing sale item snapshots are not touched."""
    cleaned = validate_product_patch(patch)
    if not cleaned:
        raise ValidationError("No fields to update")

    def _work(uow):
        product = uow.products.get_by_id(product_id, for_update=True)
        if product is None:
            raise NotFoundError("product", details={"product_id": product_id})
        if product.status == ProductStatus.DISCONTINUED.value:
            raise ValidationError("Discontinued products cannot be modified", details={"product_id": product_id})
        old_value = product.to_dict()
        for key, value in cleaned.items():
            setattr(product, key, value)
        uow.products.update(product)
        return product, old_value, product.to_dict()

    product, old_value, new_value = run_in_transaction(tenant_id, _work, action="update product")

    current_app.logger.info(
        "Product updated: tenant_id=%s product_id=%s fields=%s user_id=%s",
        tenant_id, product_id, sorted(cleaned), user_id,
    )
    audit_service.log_event(
        tenant_id=tenant_id,
        user_id=user_id,
        action="product.update",
        resource="product",
        resource_id=product_id,
        old_value=old_value,
        new_value=new_value,
    )
    return product


def change_product_status(tenant_id: int, product_id: int, status: str, *, user_id: int | None = None) -> Product:
    status = getattr(status, "value", status)

    def _work(uow):
        product = uow.products.get_by_id(product_id, for_update=True)
        if product is None:
            raise NotFoundError("product", details={"product_id": product_id})
        old_status = product.status
        product.change_status(status)
        uow.products.update(product)
        return product, old_status

    product, old_status = run_in_transaction(tenant_id, _work, action="change product status")

    current_app.logger.info(
        "Product status changed: tenant_id=%s product_id=%s %s -> %s user_id=%s",
        tenant_id, product_id, old_status, status, user_id,
    )
    audit_service.log_event(
        tenant_id=tenant_id,
        user_id=user_id,
        action="product.status",
        resource="product",
        resource_id=product_id,
        old_value={"status": old_status},
        new_value={"status": status},
    )
    return product


def get_product(tenant_id: int, product_id: int) -> Product:
    def _work(uow):
        product = uow.products.get_by_id(product_id)
        if product is None:
            raise NotFoundError("product", details={"product_id": product_id})
        return product

    return run_read(tenant_id, _work, action="get product")


def list_products(
    tenant_id: int,
    filters: ProductFilter | None = None,
    pagination: Pagination | None = None,
) -> Page:
    return run_read(
        tenant_id,
        lambda uow: uow.products.list(filters, pagination),
        action="list products",
    )
