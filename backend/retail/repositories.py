# Overview: Tenant-scoped repositories over the SQLAlchemy session.

"""
Repositories

MULTI-TENANT: every repository is constructed with a tenant_id and every
query it issues is filtered by it. Records of another tenant are invisible:
lookups return None and lists never include them.

Repositories never commit. Commit/rollback belongs to the UnitOfWork.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy import or_

from .errors import InvalidStateError, ValidationError
from .models import (
    OPEN_INVOICE_STATUSES,
    Invoice,
    Product,
    ProductStatus,
    Sale,
    SaleItem,
    SaleStatus,
    Stock,
    StockMovement,
)
from .services.concurrency import lock_for_update


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    per_page: int = 50

    @classmethod
    def from_args(cls, page=None, per_page=None) -> "Pagination":
        """Clamp client-supplied paging to sane bounds."""
        default_size, max_size = 50, 200
        if has_app_context():
            default_size = current_app.config.get("DEFAULT_PAGE_SIZE", default_size)
            max_size = current_app.config.get("MAX_PAGE_SIZE", max_size)
        try:
            page = int(page) if page is not None else 1
            per_page = int(per_page) if per_page is not None else default_size
        except (TypeError, ValueError):
            raise ValidationError("page and per_page must be integers", details={"page": page, "per_page": per_page})
        return cls(page=max(page, 1), per_page=min(max(per_page, 1), max_size))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


@dataclass
class Page:
    items: list
    total: int
    page: int
    per_page: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.per_page - 1) // self.per_page if self.total > 0 else 1

    def to_dict(self, serialize=None) -> dict:
        serialize = serialize or (lambda obj: obj.to_dict())
        return {
            "items": [serialize(item) for item in self.items],
            "count": len(self.items),
            "pagination": {
                "page": self.page,
                "per_page": self.per_page,
                "total": self.total,
                "total_pages": self.total_pages,
                "has_next": self.page < self.total_pages,
                "has_prev": self.page > 1,
            },
        }


@dataclass
class ProductFilter:
    status: str | None = None
    category: str | None = None
    search: str | None = None


@dataclass
class StockFilter:
    low_stock_only: bool = False
    out_of_stock_only: bool = False
    search: str | None = None
    product_ids: list[int] = field(default_factory=list)


@dataclass
class MovementFilter:
    product_id: int | None = None
    type: str | None = None
    reason: str | None = None
    reference: str | None = None
    created_by_user_id: int | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


@dataclass
class SaleFilter:
    status: str | None = None
    payment_method: str | None = None
    customer: str | None = None
    created_by_user_id: int | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


@dataclass
class InvoiceFilter:
    status: str | None = None
    payment_method: str | None = None
    customer: str | None = None
    sale_id: int | None = None
    created_by_user_id: int | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    due_from: datetime | None = None
    due_to: datetime | None = None


class TenantRepository:
    model: Any = None

    def __init__(self, session, tenant_id: int):
        if not tenant_id:
            raise ValidationError("tenant_id is required")
        self.session = session
        self.tenant_id = tenant_id

    def _query(self):
        return self.session.query(self.model).filter(self.model.tenant_id == self.tenant_id)

    def _claim(self, obj) -> None:
        if obj.tenant_id is None:
            obj.tenant_id = self.tenant_id
        elif obj.tenant_id != self.tenant_id:
            raise ValidationError(
                "Record belongs to another tenant",
                details={"tenant_id": self.tenant_id, "record_tenant_id": obj.tenant_id},
            )

    def get_by_id(self, record_id: int, *, for_update: bool = False):
        query = self._query().filter(self.model.id == record_id)
        if for_update:
            query = lock_for_update(query)
        return query.first()

    def create(self, obj):
        self._claim(obj)
        self.session.add(obj)
        self.session.flush()
        return obj

    def update(self, obj):
        self._claim(obj)
        self.session.flush()
        return obj

    def _apply_filter(self, query, filters):
        return query

    def _order(self, query):
        return query.order_by(self.model.id.asc())

    def list(self, filters=None, pagination: Pagination | None = None) -> Page:
        pagination = pagination or Pagination.from_args()
        query = self._apply_filter(self._query(), filters)
        total = query.count()
        items = self._order(query).offset(pagination.offset).limit(pagination.per_page).all()
        return Page(items=items, total=total, page=pagination.page, per_page=pagination.per_page)


class ProductRepository(TenantRepository):
    model = Product

    def get_by_sku(self, sku: str):
        return self._query().filter(Product.sku == sku).first()

    def count_listed(self) -> int:
        return self._query().filter(Product.status != ProductStatus.DISCONTINUED.value).count()

    def _apply_filter(self, query, filters: ProductFilter | None):
        if filters is None:
            return query
        if filters.status:
            query = query.filter(Product.status == filters.status)
        if filters.category:
            query = query.filter(Product.category == filters.category)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            query = query.filter(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
        return query

    def _order(self, query):
        return query.order_by(Product.name.asc(), Product.id.asc())


class StockRepository(TenantRepository):
    model = Stock

    def get_by_product(self, product_id: int, *, for_update: bool = False):
        query = self._query().filter(Stock.product_id == product_id)
        if for_update:
            query = lock_for_update(query)
        return query.first()

    def _apply_filter(self, query, filters: StockFilter | None):
        query = query.join(Product, Product.id == Stock.product_id)
        if filters is None:
            return query
        if filters.low_stock_only:
            query = query.filter(Stock.available_qty <= Stock.reorder_level)
        if filters.out_of_stock_only:
            query = query.filter(Stock.available_qty == 0)
        if filters.product_ids:
            query = query.filter(Stock.product_id.in_(filters.product_ids))
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            query = query.filter(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
        return query

    def _order(self, query):
        return query.order_by(Product.name.asc(), Stock.id.asc())


class MovementRepository(TenantRepository):
    """Append-only: movements can be created and read, never changed."""

    model = StockMovement

    def update(self, obj):
        raise InvalidStateError("Stock movements are immutable")

    def delete(self, obj):
        raise InvalidStateError("Stock movements cannot be deleted")

    def list_by_reference(self, reference: str) -> list[StockMovement]:
        return (
            self._query()
            .filter(StockMovement.reference == reference)
            .order_by(StockMovement.id.asc())
            .all()
        )

    def _apply_filter(self, query, filters: MovementFilter | None):
        if filters is None:
            return query
        if filters.product_id is not None:
            query = query.filter(StockMovement.product_id == filters.product_id)
        if filters.type:
            query = query.filter(StockMovement.type == filters.type)
        if filters.reason:
            query = query.filter(StockMovement.reason == filters.reason)
        if filters.reference:
            query = query.filter(StockMovement.reference == filters.reference)
        if filters.created_by_user_id is not None:
            query = query.filter(StockMovement.created_by_user_id == filters.created_by_user_id)
        if filters.created_from is not None:
            query = query.filter(StockMovement.created_at >= filters.created_from)
        if filters.created_to is not None:
            query = query.filter(StockMovement.created_at <= filters.created_to)
        return query

    def _order(self, query):
        return query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())


class SaleRepository(TenantRepository):
    model = Sale

    def get_by_number(self, sale_number: str, *, for_update: bool = False):
        query = self._query().filter(Sale.sale_number == sale_number)
        if for_update:
            query = lock_for_update(query)
        return query.first()

    def count_billable_since(self, since: datetime) -> int:
        """Sales opened since `since` that still count toward the monthly quota."""
        return (
            self._query()
            .filter(Sale.created_at >= since, Sale.status != SaleStatus.CANCELLED.value)
            .count()
        )

    def _apply_filter(self, query, filters: SaleFilter | None):
        if filters is None:
            return query
        if filters.status:
            query = query.filter(Sale.status == filters.status)
        if filters.payment_method:
            query = query.filter(Sale.payment_method == filters.payment_method)
        if filters.customer:
            pattern = f"%{filters.customer.strip()}%"
            query = query.filter(or_(
                Sale.customer_name.ilike(pattern),
                Sale.customer_email.ilike(pattern),
                Sale.customer_phone.ilike(pattern),
            ))
        if filters.created_by_user_id is not None:
            query = query.filter(Sale.created_by_user_id == filters.created_by_user_id)
        if filters.created_from is not None:
            query = query.filter(Sale.created_at >= filters.created_from)
        if filters.created_to is not None:
            query = query.filter(Sale.created_at <= filters.created_to)
        return query

    def _order(self, query):
        return query.order_by(Sale.created_at.desc(), Sale.id.desc())


class SaleItemRepository(TenantRepository):
    model = SaleItem

    def list_for_sale(self, sale_id: int) -> list[SaleItem]:
        return self._query().filter(SaleItem.sale_id == sale_id).order_by(SaleItem.position.asc()).all()


class InvoiceRepository(TenantRepository):
    model = Invoice

    def get_by_number(self, invoice_number: str, *, for_update: bool = False):
        query = self._query().filter(Invoice.invoice_number == invoice_number)
        if for_update:
            query = lock_for_update(query)
        return query.first()

    def get_by_sale(self, sale_id: int):
        return self._query().filter(Invoice.sale_id == sale_id).first()

    def list_overdue(self, now: datetime, pagination: Pagination | None = None) -> Page:
        """Open invoices whose due date has passed, oldest due date first."""
        pagination = pagination or Pagination.from_args()
        query = self._query().filter(
            Invoice.status.in_(sorted(OPEN_INVOICE_STATUSES)),
            Invoice.due_date.isnot(None),
            Invoice.due_date < now,
        )
        total = query.count()
        items = (
            query.order_by(Invoice.due_date.asc(), Invoice.id.asc())
            .offset(pagination.offset)
            .limit(pagination.per_page)
            .all()
        )
        return Page(items=items, total=total, page=pagination.page, per_page=pagination.per_page)

    def _apply_filter(self, query, filters: InvoiceFilter | None):
        if filters is None:
            return query
        if filters.status:
            query = query.filter(Invoice.status == filters.status)
        if filters.payment_method:
            query = query.filter(Invoice.payment_method == filters.payment_method)
        if filters.customer:
            pattern = f"%{filters.customer.strip()}%"
            query = query.filter(or_(
                Invoice.customer_name.ilike(pattern),
                Invoice.customer_email.ilike(pattern),
                Invoice.customer_phone.ilike(pattern),
            ))
        if filters.sale_id is not None:
            query = query.filter(Invoice.sale_id == filters.sale_id)
        if filters.created_by_user_id is not None:
            query = query.filter(Invoice.created_by_user_id == filters.created_by_user_id)
        if filters.created_from is not None:
            query = query.filter(Invoice.created_at >= filters.created_from)
        if filters.created_to is not None:
            query = query.filter(Invoice.created_at <= filters.created_to)
        if filters.due_from is not None:
            query = query.filter(Invoice.due_date >= filters.due_from)
        if filters.due_to is not None:
            query = query.filter(Invoice.due_date <= filters.due_to)
        return query

    def _order(self, query):
        return query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
