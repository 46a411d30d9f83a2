"""
Stock Service: Ledger-backed stock mutations

WHY: Stock rows are a materialized summary; the movement log is the record.
Every quantity change here writes both in one transaction:

    lock stock row -> validate/mutate quantities -> append movement -> commit

INVARIANTS:
- total_qty == available_qty + reserved_qty, all >= 0 (enforced by Stock)
- One movement per mutation, quantity > 0, never edited
- Failed validation leaves both stock and movement log untouched
- Audit runs after commit and never affects the outcome
"""

from __future__ import annotations

from flask import current_app

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import MovementReason, MovementType, Stock, StockMovement
from ..repositories import MovementFilter, Page, Pagination, StockFilter
from . import audit_service
from .unit_of_work import run_in_transaction, run_read

ADJUSTMENT_TYPES = frozenset({MovementType.IN.value, MovementType.OUT.value})

_STOCK_MUTATIONS = {
    MovementType.IN.value: Stock.add_stock,
    MovementType.OUT.value: Stock.remove_stock,
}


def _load_locked(uow, product_id: int, *, require_active: bool = False):
    product = uow.products.get_by_id(product_id)
    if product is None:
        raise NotFoundError("product", details={"product_id": product_id})
    if require_active and not product.is_active:
        raise ValidationError(
            "Product is not active",
            details={"product_id": product_id, "status": product.status},
        )
    stock = uow.stocks.get_by_product(product_id, for_update=True)
    if stock is None:
        raise NotFoundError("stock", details={"product_id": product_id})
    return product, stock


def _apply_movement(
    tenant_id: int,
    product_id: int,
    *,
    mutate,
    movement_type: str,
    reason: str,
    quantity: int,
    reference: str | None,
    notes: str | None,
    user_id: int | None,
    action: str,
    require_active: bool = False,
) -> Stock:
    def _work(uow):
        product, stock = _load_locked(uow, product_id, require_active=require_active)
        old_value = stock.snapshot()
        try:
            mutate(stock, quantity)
        except InsufficientStockError as exc:
            raise InsufficientStockError(exc.requested, exc.available, product=product.sku) from None

        uow.stocks.update(stock)
        movement = uow.movements.create(StockMovement.record(
            tenant_id=tenant_id,
            product_id=product_id,
            movement_type=movement_type,
            reason=reason,
            quantity=quantity,
            reference=reference,
            notes=notes,
            created_by_user_id=user_id,
        ))
        return stock, old_value, stock.snapshot(), movement.id

    stock, old_value, new_value, movement_id = run_in_transaction(
        tenant_id, _work, action=action.replace(".", " ")
    )

    current_app.logger.info(
        "Stock %s: tenant_id=%s product_id=%s qty=%s type=%s reason=%s ref=%s user_id=%s %s -> %s",
        action, tenant_id, product_id, quantity, movement_type, reason, reference, user_id, old_value, new_value,
    )
    audit_service.log_event(
        tenant_id=tenant_id,
        user_id=user_id,
        action=f"stock.{action}",
        resource="stock",
        resource_id=product_id,
        old_value=old_value,
        new_value={**new_value, "movement_id": movement_id},
    )
    return stock


def adjust_stock(
    tenant_id: int,
    product_id: int,
    *,
    movement_type: str,
    reason: str,
    quantity: int,
    reference: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Stock:
    """
    Manual adjustment: "in" adds to available, "out" removes from available.

    Reservations go through reserve/release/confirm instead.
    """
    movement_type = getattr(movement_type, "value", movement_type)
    if movement_type not in ADJUSTMENT_TYPES:
        raise ValidationError(
            "Adjustment type must be 'in' or 'out'",
            details={"type": movement_type, "allowed": sorted(ADJUSTMENT_TYPES)},
        )
    return _apply_movement(
        tenant_id,
        product_id,
        mutate=_STOCK_MUTATIONS[movement_type],
        movement_type=movement_type,
        reason=reason,
        quantity=quantity,
        reference=reference,
        notes=notes,
        user_id=user_id,
        action="adjust",
    )


def _require_reference(reference) -> str:
    if not reference or not str(reference).strip():
        raise ValidationError("reference is required")
    return str(reference).strip()


def reserve_stock(
    tenant_id: int,
    product_id: int,
    quantity: int,
    *,
    reference: str,
    notes: str | None = None,
    user_id: int | None = None,
) -> Stock:
    """Move quantity from available to reserved. Only active products can be reserved."""
    return _apply_movement(
        tenant_id,
        product_id,
        mutate=Stock.reserve_stock,
        movement_type=MovementType.RESERVED.value,
        reason=MovementReason.RESERVATION.value,
        quantity=quantity,
        reference=_require_reference(reference),
        notes=notes,
        user_id=user_id,
        action="reserve",
        require_active=True,
    )


def release_reserved_stock(
    tenant_id: int,
    product_id: int,
    quantity: int,
    *,
    reference: str,
    notes: str | None = None,
    user_id: int | None = None,
) -> Stock:
    return _apply_movement(
        tenant_id,
        product_id,
        mutate=Stock.release_reserved_stock,
        movement_type=MovementType.RELEASED.value,
        reason=MovementReason.RELEASE.value,
        quantity=quantity,
        reference=_require_reference(reference),
        notes=notes,
        user_id=user_id,
        action="release",
    )


def confirm_reserved_stock(
    tenant_id: int,
    product_id: int,
    quantity: int,
    *,
    reference: str,
    notes: str | None = None,
    user_id: int | None = None,
) -> Stock:
    """Reserved quantity is sold: reserved and total drop, available is untouched."""
    return _apply_movement(
        tenant_id,
        product_id,
        mutate=Stock.confirm_reserved_stock,
        movement_type=MovementType.OUT.value,
        reason=MovementReason.SALE.value,
        quantity=quantity,
        reference=_require_reference(reference),
        notes=notes,
        user_id=user_id,
        action="confirm",
    )


def update_reorder_level(tenant_id: int, product_id: int, level: int, *, user_id: int | None = None) -> Stock:
    def _work(uow):
        _, stock = _load_locked(uow, product_id)
        old_level = stock.reorder_level
        stock.update_reorder_level(level)
        uow.stocks.update(stock)
        return stock, old_level

    stock, old_level = run_in_transaction(tenant_id, _work, action="update reorder level")

    current_app.logger.info(
        "Reorder level updated: tenant_id=%s product_id=%s %s -> %s user_id=%s",
        tenant_id, product_id, old_level, level, user_id,
    )
    audit_service.log_event(
        tenant_id=tenant_id,
        user_id=user_id,
        action="stock.reorder_level",
        resource="stock",
        resource_id=product_id,
        old_value={"reorder_level": old_level},
        new_value={"reorder_level": level},
    )
    return stock


# =============================================================================
# Reads
# =============================================================================

def get_stock(tenant_id: int, product_id: int) -> Stock:
    def _work(uow):
        stock = uow.stocks.get_by_product(product_id)
        if stock is None:
            raise NotFoundError("stock", details={"product_id": product_id})
        return stock

    return run_read(tenant_id, _work, action="get stock")


def list_stock(tenant_id: int, filters: StockFilter | None = None, pagination: Pagination | None = None) -> Page:
    return run_read(tenant_id, lambda uow: uow.stocks.list(filters, pagination), action="list stock")


def list_low_stock(tenant_id: int, pagination: Pagination | None = None) -> Page:
    return list_stock(tenant_id, StockFilter(low_stock_only=True), pagination)


def list_movements(
    tenant_id: int,
    filters: MovementFilter | None = None,
    pagination: Pagination | None = None,
) -> Page:
    return run_read(tenant_id, lambda uow: uow.movements.list(filters, pagination), action="list movements")


def list_movements_by_reference(tenant_id: int, reference: str) -> list[StockMovement]:
    return run_read(tenant_id, lambda uow: uow.movements.list_by_reference(reference), action="list movements")
