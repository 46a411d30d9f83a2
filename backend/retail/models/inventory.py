from __future__ import annotations

from enum import Enum
from types import MappingProxyType

from sqlalchemy import event

from ..extensions import db
from ..errors import InsufficientStockError, InvalidStateError, ValidationError
from ..time_utils import to_utc_z, utcnow


class ProductStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DISCONTINUED = "discontinued"


# Legal status transitions. DISCONTINUED is terminal (soft delete).
PRODUCT_STATUS_TRANSITIONS = MappingProxyType({
    ProductStatus.ACTIVE.value: frozenset({ProductStatus.INACTIVE.value, ProductStatus.DISCONTINUED.value}),
    ProductStatus.INACTIVE.value: frozenset({ProductStatus.ACTIVE.value, ProductStatus.DISCONTINUED.value}),
    ProductStatus.DISCONTINUED.value: frozenset(),
})


class MovementType(str, Enum):
    IN = "in"
    OUT = "out"
    RESERVED = "reserved"
    RELEASED = "released"


class MovementReason(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    RETURN = "return"
    DAMAGE = "damage"
    EXPIRY = "expiry"
    ADJUSTMENT = "adjustment"
    RESERVATION = "reservation"
    RELEASE = "release"


MOVEMENT_TYPES = frozenset(t.value for t in MovementType)
MOVEMENT_REASONS = frozenset(r.value for r in MovementReason)


def _require_positive_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Invalid quantity", details={"quantity": quantity})
    if quantity <= 0:
        raise ValidationError(
            "Invalid quantity",
            details={"quantity": quantity, "reason": "quantity must be greater than 0"},
        )
    return quantity


class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: Products are scoped to tenants via tenant_id.
    SKUs are unique within a tenant.

    Products are never physically deleted; DISCONTINUED is the soft-delete state.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        db.Index("ix_products_tenant_name", "tenant_id", "name"),
        db.Index("ix_products_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(120), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=ProductStatus.ACTIVE.value)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} tenant_id={self.tenant_id}>"

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE.value

    def change_status(self, new_status: str) -> None:
        if new_status not in PRODUCT_STATUS_TRANSITIONS:
            raise ValidationError(
                "Invalid product status",
                details={"status": new_status, "allowed": sorted(PRODUCT_STATUS_TRANSITIONS)},
            )
        if new_status == self.status:
            return
        if new_status not in PRODUCT_STATUS_TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Cannot change product status from {self.status} to {new_status}",
                details={"from": self.status, "to": new_status},
            )
        self.status = new_status

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "unit": self.unit,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Stock(db.Model):
    """
    Current stock levels for one product (one row per product per tenant).

    INVARIANTS:
    - total_qty == available_qty + reserved_qty
    - available_qty, reserved_qty, total_qty are all >= 0

    The row is a materialized summary of the movement log. Quantities change only
    through add/remove/reserve/release/confirm below; none of those persist.
    Persistence happens in the service layer inside a transaction.
    """
    __tablename__ = "stocks"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "product_id", name="uq_stocks_tenant_product"),
        db.CheckConstraint("available_qty >= 0", name="ck_stocks_available_nonneg"),
        db.CheckConstraint("reserved_qty >= 0", name="ck_stocks_reserved_nonneg"),
        db.CheckConstraint("total_qty = available_qty + reserved_qty", name="ck_stocks_total"),
        db.CheckConstraint("reorder_level >= 0", name="ck_stocks_reorder_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    available_qty = db.Column(db.Integer, nullable=False, default=0)
    reserved_qty = db.Column(db.Integer, nullable=False, default=0)
    total_qty = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)

    last_movement_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product", backref=db.backref("stock", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @classmethod
    def open(cls, *, tenant_id: int, product_id: int | None, initial_qty: int = 0, reorder_level: int = 0) -> "Stock":
        """New stock record for a product, starting with initial_qty available."""
        if isinstance(initial_qty, bool) or not isinstance(initial_qty, int) or initial_qty < 0:
            raise ValidationError("Invalid initial quantity", details={"initial_qty": initial_qty})
        if isinstance(reorder_level, bool) or not isinstance(reorder_level, int) or reorder_level < 0:
            raise ValidationError("Invalid reorder level", details={"reorder_level": reorder_level})

        now = utcnow()
        return cls(
            tenant_id=tenant_id,
            product_id=product_id,
            available_qty=initial_qty,
            reserved_qty=0,
            total_qty=initial_qty,
            reorder_level=reorder_level,
            last_movement_at=now if initial_qty > 0 else None,
            created_at=now,
            updated_at=now,
        )

    def _touch(self) -> None:
        now = utcnow()
        self.total_qty = self.available_qty + self.reserved_qty
        self.last_movement_at = now
        self.updated_at = now

    def add_stock(self, quantity: int) -> None:
        _require_positive_quantity(quantity)
        self.available_qty += quantity
        self._touch()

    def remove_stock(self, quantity: int) -> None:
        _require_positive_quantity(quantity)
        if self.available_qty < quantity:
            raise InsufficientStockError(requested=quantity, available=self.available_qty)
        self.available_qty -= quantity
        self._touch()

    def reserve_stock(self, quantity: int) -> None:
        _require_positive_quantity(quantity)
        if self.available_qty < quantity:
            raise InsufficientStockError(requested=quantity, available=self.available_qty)
        self.available_qty -= quantity
        self.reserved_qty += quantity
        self._touch()

    def release_reserved_stock(self, quantity: int) -> None:
        _require_positive_quantity(quantity)
        if self.reserved_qty < quantity:
            raise InvalidStateError(
                "Not enough reserved stock to release",
                details={"requested": quantity, "reserved": self.reserved_qty},
            )
        self.reserved_qty -= quantity
        self.available_qty += quantity
        self._touch()

    def confirm_reserved_stock(self, quantity: int) -> None:
        """Reserved quantity leaves the system (sold); available is untouched."""
        _require_positive_quantity(quantity)
        if self.reserved_qty < quantity:
            raise InvalidStateError(
                "Not enough reserved stock to confirm",
                details={"requested": quantity, "reserved": self.reserved_qty},
            )
        self.reserved_qty -= quantity
        self._touch()

    def update_reorder_level(self, level: int) -> None:
        if isinstance(level, bool) or not isinstance(level, int) or level < 0:
            raise ValidationError("Invalid reorder level", details={"reorder_level": level})
        self.reorder_level = level
        self.updated_at = utcnow()

    def is_low_stock(self) -> bool:
        return self.available_qty <= self.reorder_level

    def is_out_of_stock(self) -> bool:
        return self.available_qty == 0

    def can_fulfill_order(self, quantity: int) -> bool:
        return self.available_qty >= quantity

    @property
    def stock_status(self) -> str:
        if self.is_out_of_stock():
            return "Out of Stock"
        if self.is_low_stock():
            return "Low Stock"
        return "In Stock"

    def snapshot(self) -> dict:
        return {
            "available_qty": self.available_qty,
            "reserved_qty": self.reserved_qty,
            "total_qty": self.total_qty,
        }

    def to_dict(self) -> dict:
        product = self.product
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "product_sku": product.sku if product else None,
            "product_name": product.name if product else None,
            "available_qty": self.available_qty,
            "reserved_qty": self.reserved_qty,
            "total_qty": self.total_qty,
            "reorder_level": self.reorder_level,
            "stock_status": self.stock_status,
            "last_movement_at": to_utc_z(self.last_movement_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of one stock quantity change.

    IMMUTABLE: rows are never updated or deleted. Corrections are recorded as
    an opposite movement.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_tenant_product_created", "tenant_id", "product_id", "created_at"),
        db.Index("ix_movements_tenant_reference", "tenant_id", "reference"),
        db.CheckConstraint("quantity > 0", name="ck_movements_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    reason = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    # Free-text correlation id (sale number, purchase order, ...)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")

    @classmethod
    def record(
        cls,
        *,
        tenant_id: int,
        product_id: int,
        movement_type: str,
        reason: str,
        quantity: int,
        reference: str | None = None,
        notes: str | None = None,
        created_by_user_id: int | None = None,
    ) -> "StockMovement":
        movement_type = getattr(movement_type, "value", movement_type)
        reason = getattr(reason, "value", reason)
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(
                "Invalid stock movement type",
                details={"type": movement_type, "allowed": sorted(MOVEMENT_TYPES)},
            )
        if reason not in MOVEMENT_REASONS:
            raise ValidationError(
                "Invalid stock movement reason",
                details={"reason": reason, "allowed": sorted(MOVEMENT_REASONS)},
            )
        _require_positive_quantity(quantity)

        return cls(
            tenant_id=tenant_id,
            product_id=product_id,
            type=movement_type,
            reason=reason,
            quantity=quantity,
            reference=reference,
            notes=notes,
            created_by_user_id=created_by_user_id,
            created_at=utcnow(),
        )

    def to_dict(self) -> dict:
        product = self.product
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "product_sku": product.sku if product else None,
            "product_name": product.name if product else None,
            "type": self.type,
            "reason": self.reason,
            "quantity": self.quantity,
            "reference": self.reference,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise InvalidStateError("Stock movements are immutable")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise InvalidStateError("Stock movements cannot be deleted")
