"""
Sales Service: Sale lifecycle orchestration

STATES: pending -> completed | cancelled (both terminal)

- Pending sales never touch stock. Adding or updating an item only checks
  that current available stock could cover the whole line.
- complete_sale() flips the status, decrements stock for every item (in
  insertion order) and appends one out/sale movement per item, all in ONE
  transaction. If any item lacks stock, nothing is written: the sale stays
  pending and no stock row or movement changes.
- The subscription gate runs before the transaction opens.
"""

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ..models import MovementReason, MovementType, Sale, SaleItem, StockMovement
from ..repositories import Page, Pagination, SaleFilter
from . import audit_service
from .document_service import next_document_number
from .subscription_service import require_capacity
from .unit_of_work import run_in_transaction, run_read

SALE_DOCUMENT_TYPE = "sale"
SALE_NUMBER_PREFIX = "S"
COMPLETION_NOTE = "Sale completion"


def _sale_state(sale: Sale) -> dict:
    return {
        "status": sale.status,
        "subtotal_cents": sale.subtotal_cents,
        "discount_cents": sale.discount_cents,
        "tax_cents": sale.tax_cents,
        "total_cents": sale.total_cents,
        "paid_cents": sale.paid_cents,
        "item_count": sale.item_count,
    }


def _load_sale(uow, sale_id: int) -> Sale:
    sale = uow.sales.get_by_id(sale_id, for_update=True)
    if sale is None:
        raise NotFoundError("sale", details={"sale_id": sale_id})
    return sale


def _load_sellable_product(uow, product_id: int):
    product = uow.products.get_by_id(product_id)
    if product is None:
        raise NotFoundError("product", details={"product_id": product_id})
    if not product.is_active:
        raise ValidationError(
            "Product is not available for sale",
            details={"product_id": product_id, "status": product.status},
        )
    return product


def _check_fulfillable(uow, product, quantity: int) -> None:
    stock = uow.stocks.get_by_product(product.id, for_update=True)
    if stock is None:
        raise NotFoundError("stock", details={"product_id": product.id})
    if not stock.can_fulfill_order(quantity):
        raise InsufficientStockError(requested=quantity, available=stock.available_qty, product=product.sku)


def _require_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Invalid quantity", details={"quantity": quantity})
    return quantity


def _note_discount_clamp(sale: Sale, discount_before: int) -> None:
    if sale.discount_cents < discount_before:
        current_app.logger.warning(
            "Sale discount reduced to new subtotal: tenant_id=%s sale_number=%s discount_cents %s -> %s",
            sale.tenant_id, sale.sale_number, discount_before, sale.discount_cents,
        )


def _mutate_sale(tenant_id: int, sale_id: int, mutate, *, action: str, user_id: int | None) -> Sale:
    """Lock the sale, apply mutate(uow, sale), commit, then log and audit."""
    def _work(uow):
        sale = _load_sale(uow, sale_id)
        old_value = _sale_state(sale)
        mutate(uow, sale)
        uow.sales.update(sale)
        return sale, sale.sale_number, old_value, _sale_state(sale)

    sale, sale_number, old_value, new_value = run_in_transaction(
        tenant_id, _work, action=action.replace("_", " ")
    )

    current_app.logger.info(
        "Sale %s: tenant_id=%s sale_id=%s sale_number=%s user_id=%s %s -> %s",
        action, tenant_id, sale_id, sale_number, user_id, old_value, new_value,
    )
    audit_service.log_event(
        tenant_id=tenant_id,
        user_id=user_id,
        action=f"sale.{action}",
        resource="sale",
        resource_id=sale_number,
        old_value=old_value,
        new_value=new_value,
    )
    return sale


def create_sale(
    tenant_id: int,
    *,
    customer_name: str | None = None,
    customer_email: str | None = None,
    customer_phone: str | None = None,
    user_id: int | None = None,
) -> Sale:
    require_capacity(tenant_id, "sales")

    def _work(uow):
        sale_number = next_document_number(
            tenant_id=tenant_id,
            document_type=SALE_DOCUMENT_TYPE,
            prefix=SALE_NUMBER_PREFIX,
            session=uow.session,
        )
        if uow.sales.get_by_number(sale_number) is not None:
            raise ConflictError("Sale number already exists", details={"sale_number": sale_number})
        sale = uow.sales.create(Sale.open(
            tenant_id=tenant_id,
            sale_number=sale_number,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            created_by_user_id=user_id,
        ))
        return sale, sale.id, sale_number

    sale, sale_id, sale_number = run_in_transaction(tenant_id, _work, action="create sale")

    current_app.logger.info(
        "Sale created: tenant_id=%s sale_id=%s sale_number=%s user_id=%s", tenant_id, sale_id, sale_number, user_id
    )
    audit_service.log_event(
        tenant_id=tenant_id,
        user_id=user_id,
        action="sale.create",
        resource="sale",
        resource_id=sale_number,
        new_value={"status": sale.status, "sale_number": sale_number},
    )
    return sale


def add_sale_item(tenant_id: int, sale_id: int, product_id: int, quantity: int, *, user_id: int | None = None) -> Sale:
    """
    Add a line to a pending sale, merging into an existing line for the same
    product. The merged line quantity must be coverable by available stock.

    Nothing is reserved: two pending sales may each hold a line for the same
    last units. Only the first of them to complete gets the stock; the other
    fails at complete_sale() with InsufficientStockError.
    """
    _require_quantity(quantity)

    def _mutate(uow, sale: Sale) -> None:
        sale._require_pending("add items")
        product = _load_sellable_product(uow, product_id)
        existing = sale.find_item(product_id)
        line_quantity = quantity + (existing.quantity if existing is not None else 0)
        _check_fulfillable(uow, product, line_quantity)
        sale.add_item(SaleItem.from_product(product, quantity))

    return _mutate_sale(tenant_id, sale_id, _mutate, action="add_item", user_id=user_id)


def update_sale_item(tenant_id: int, sale_id: int, product_id: int, quantity: int, *, user_id: int | None = None) -> Sale:
    _require_quantity(quantity)

    def _mutate(uow, sale: Sale) -> None:
        sale._require_pending("update items")
        if sale.find_item(product_id) is None:
            raise NotFoundError("sale item", details={"sale_id": sale_id, "product_id": product_id})
        product = _load_sellable_product(uow, product_id)
        discount_before = sale.discount_cents
        _check_fulfillable(uow, product, quantity)
        sale.update_item_quantity(product_id, quantity)
        _note_discount_clamp(sale, discount_before)

    return _mutate_sale(tenant_id, sale_id, _mutate, action="update_item", user_id=user_id)


def remove_sale_item(tenant_id: int, sale_id: int, product_id: int, *, user_id: int | None = None) -> Sale:
    def _mutate(uow, sale: Sale) -> None:
        discount_before = sale.discount_cents
        sale.remove_item(product_id)
        _note_discount_clamp(sale, discount_before)

    return _mutate_sale(tenant_id, sale_id, _mutate, action="remove_item", user_id=user_id)


def apply_sale_adjustments(
    tenant_id: int,
    sale_id: int,
    *,
    discount_cents: int | None = None,
    tax_percent=None,
    user_id: int | None = None,
) -> Sale:
    """Apply discount and/or tax rate to a pending sale (discount first)."""
    if discount_cents is None and tax_percent is None:
        raise ValidationError("discount_cents or tax_percent is required")

    def _mutate(uow, sale: Sale) -> None:
        if discount_cents is not None:
            sale.apply_discount(discount_cents)
        if tax_percent is not None:
            sale.apply_tax(tax_percent)

    return _mutate_sale(tenant_id, sale_id, _mutate, action="adjust", user_id=user_id)


def complete_sale(
    tenant_id: int,
    sale_id: int,
    *,
    paid_cents: int,
    payment_method: str,
    discount_cents: int | None = None,
    tax_percent=None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Sale:
    """
    Take payment, complete the sale and decrement stock atomically.

    Items are processed in insertion order; the first item without enough
    available stock aborts the whole transaction with InsufficientStockError.
    """
    def _mutate(uow, sale: Sale) -> None:
        sale._require_pending("complete sale")
        if discount_cents is not None:
            sale.apply_discount(discount_cents)
        if tax_percent is not None:
            sale.apply_tax(tax_percent)
        sale.process_payment(paid_cents, payment_method)
        if notes:
            sale.add_notes(notes)
        sale.complete()

        for item in sale.items:
            stock = uow.stocks.get_by_product(item.product_id, for_update=True)
            if stock is None:
                raise NotFoundError("stock", details={"product_id": item.product_id})
            try:
                stock.remove_stock(item.quantity)
            except InsufficientStockError as exc:
                raise InsufficientStockError(exc.requested, exc.available, product=item.product_sku) from None
            uow.stocks.update(stock)
            uow.movements.create(StockMovement.record(
                tenant_id=tenant_id,
                product_id=item.product_id,
                movement_type=MovementType.OUT,
                reason=MovementReason.SALE,
                quantity=item.quantity,
                reference=sale.sale_number,
                notes=COMPLETION_NOTE,
                created_by_user_id=user_id,
            ))

    return _mutate_sale(tenant_id, sale_id, _mutate, action="complete", user_id=user_id)


def cancel_sale(tenant_id: int, sale_id: int, *, reason: str | None = None, user_id: int | None = None) -> Sale:
    """Cancel a pending sale. Pending sales never touched stock, so nothing is reversed."""
    def _mutate(uow, sale: Sale) -> None:
        sale.cancel()
        if reason:
            sale.add_notes(reason)

    return _mutate_sale(tenant_id, sale_id, _mutate, action="cancel", user_id=user_id)


# =============================================================================
# Reads
# =============================================================================

def get_sale(tenant_id: int, sale_id: int) -> Sale:
    def _work(uow):
        sale = uow.sales.get_by_id(sale_id)
        if sale is None:
            raise NotFoundError("sale", details={"sale_id": sale_id})
        return sale

    return run_read(tenant_id, _work, action="get sale")


def get_sale_by_number(tenant_id: int, sale_number: str) -> Sale:
    def _work(uow):
        sale = uow.sales.get_by_number(sale_number)
        if sale is None:
            raise NotFoundError("sale", details={"sale_number": sale_number})
        return sale

    return run_read(tenant_id, _work, action="get sale")


def list_sales(tenant_id: int, filters: SaleFilter | None = None, pagination: Pagination | None = None) -> Page:
    return run_read(tenant_id, lambda uow: uow.sales.list(filters, pagination), action="list sales")
