from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum

from sqlalchemy import event, inspect

from ..extensions import db
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..time_utils import to_utc_z, utcnow


class SaleStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    DIGITAL_WALLET = "digital_wallet"
    BANK_TRANSFER = "bank_transfer"


PAYMENT_METHODS = frozenset(m.value for m in PaymentMethod)


def _to_decimal(value, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}", details={field: value})
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {field}", details={field: value})
    if not result.is_finite():
        raise ValidationError(f"Invalid {field}", details={field: str(value)})
    return result


def _require_cents(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer number of cents", details={field: value})
    if value < 0:
        raise ValidationError(f"{field} cannot be negative", details={field: value})
    return value


class Sale(db.Model):
    """
    Sale aggregate: line items, computed totals, and a status state machine.

    STATES: pending -> completed (terminal) | pending -> cancelled (terminal)

    - Items may be added/updated/removed only while pending.
    - Totals are recomputed from items whenever items, discount or tax change:
        total = subtotal - discount + tax, tax = (subtotal - discount) * tax_percent / 100
      rounded to the nearest cent, half-up.
    - Completing does not touch stock; the sales service decrements stock in the
      same transaction that flips the status.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sale_number", name="uq_sales_tenant_number"),
        db.Index("ix_sales_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    # Human-readable number (e.g., "S-001-0042")
    sale_number = db.Column(db.String(64), nullable=False, index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SaleStatus.PENDING.value, index=True)

    # Amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_percent = db.Column(db.Numeric(7, 4), nullable=True)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(32), nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.position",
        cascade="all, delete-orphan",
        lazy="select",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @classmethod
    def open(
        cls,
        *,
        tenant_id: int,
        sale_number: str,
        customer_name: str | None = None,
        customer_email: str | None = None,
        customer_phone: str | None = None,
        created_by_user_id: int | None = None,
    ) -> "Sale":
        if not sale_number:
            raise ValidationError("sale number is required")
        now = utcnow()
        return cls(
            tenant_id=tenant_id,
            sale_number=sale_number,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            status=SaleStatus.PENDING.value,
            subtotal_cents=0,
            discount_cents=0,
            tax_percent=None,
            tax_cents=0,
            total_cents=0,
            paid_cents=0,
            change_cents=0,
            created_by_user_id=created_by_user_id,
            created_at=now,
            updated_at=now,
            items=[],
        )

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    @property
    def is_pending(self) -> bool:
        return self.status == SaleStatus.PENDING.value

    @property
    def is_completed(self) -> bool:
        return self.status == SaleStatus.COMPLETED.value

    @property
    def is_cancelled(self) -> bool:
        return self.status == SaleStatus.CANCELLED.value

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def _require_pending(self, action: str) -> None:
        if not self.is_pending:
            raise InvalidStateError(
                f"Cannot {action}: sale is {self.status}",
                details={"sale_number": self.sale_number, "status": self.status},
            )

    def find_item(self, product_id: int) -> "SaleItem | None":
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    # ------------------------------------------------------------------
    # Item mutations (pending only)
    # ------------------------------------------------------------------

    def add_item(self, item: "SaleItem") -> "SaleItem":
        """Attach a line; a second line for the same product merges into the first."""
        self._require_pending("add items")
        if item is None:
            raise ValidationError("sale item is required")

        existing = self.find_item(item.product_id)
        if existing is not None:
            existing.set_quantity(existing.quantity + item.quantity)
            self._recalculate()
            return existing

        item.tenant_id = self.tenant_id
        item.position = max((i.position for i in self.items), default=0) + 1
        self.items.append(item)
        self._recalculate()
        return item

    def update_item_quantity(self, product_id: int, quantity: int) -> "SaleItem":
        self._require_pending("update items")
        item = self.find_item(product_id)
        if item is None:
            raise NotFoundError("sale item", details={"product_id": product_id})
        item.set_quantity(quantity)
        self._recalculate()
        return item

    def remove_item(self, product_id: int) -> "SaleItem":
        self._require_pending("remove items")
        item = self.find_item(product_id)
        if item is None:
            raise NotFoundError("sale item", details={"product_id": product_id})
        self.items.remove(item)
        self._recalculate()
        return item

    # ------------------------------------------------------------------
    # Pricing and payment
    # ------------------------------------------------------------------

    def apply_discount(self, discount_cents: int) -> None:
        self._require_pending("apply a discount")
        _require_cents(discount_cents, "discount_cents")
        if discount_cents > self.subtotal_cents:
            raise ValidationError(
                "discount amount cannot be greater than subtotal",
                details={"discount_cents": discount_cents, "subtotal_cents": self.subtotal_cents},
            )
        self.discount_cents = discount_cents
        self._recalculate()

    def apply_tax(self, tax_percent) -> None:
        self._require_pending("apply tax")
        rate = _to_decimal(tax_percent, "tax_percent")
        if rate < 0:
            raise ValidationError("tax percentage cannot be negative", details={"tax_percent": str(rate)})
        self.tax_percent = rate
        self._recalculate()

    def process_payment(self, paid_cents: int, payment_method: str) -> None:
        self._require_pending("process payment")
        payment_method = getattr(payment_method, "value", payment_method)
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(
                "Invalid payment method",
                details={"payment_method": payment_method, "allowed": sorted(PAYMENT_METHODS)},
            )
        _require_cents(paid_cents, "paid_cents")
        if paid_cents < self.total_cents:
            raise ValidationError(
                "paid amount is less than total amount",
                details={"paid_cents": paid_cents, "total_cents": self.total_cents},
            )
        self.paid_cents = paid_cents
        self.change_cents = paid_cents - self.total_cents
        self.payment_method = payment_method
        self.updated_at = utcnow()

    @property
    def payment_processed(self) -> bool:
        return self.payment_method is not None and self.paid_cents >= self.total_cents

    def add_notes(self, notes: str) -> None:
        self.notes = notes
        self.updated_at = utcnow()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def complete(self) -> None:
        self._require_pending("complete sale")
        if not self.items:
            raise ValidationError("sale must have at least one item", details={"sale_number": self.sale_number})
        if not self.payment_processed:
            raise ValidationError(
                "sale payment is incomplete",
                details={"paid_cents": self.paid_cents, "total_cents": self.total_cents},
            )
        now = utcnow()
        self.status = SaleStatus.COMPLETED.value
        self.completed_at = now
        self.updated_at = now

    def cancel(self) -> None:
        if self.is_completed:
            raise InvalidStateError("completed sales cannot be cancelled", details={"sale_number": self.sale_number})
        if self.is_cancelled:
            raise InvalidStateError("sale is already cancelled", details={"sale_number": self.sale_number})
        now = utcnow()
        self.status = SaleStatus.CANCELLED.value
        self.cancelled_at = now
        self.updated_at = now

    def _recalculate(self) -> None:
        self.subtotal_cents = sum(item.total_price_cents for item in self.items)
        # A retained discount never exceeds the latest subtotal
        self.discount_cents = min(self.discount_cents or 0, self.subtotal_cents)

        taxable = self.subtotal_cents - self.discount_cents
        if self.tax_percent is None:
            self.tax_cents = 0
        else:
            tax = Decimal(taxable) * Decimal(self.tax_percent) / Decimal(100)
            self.tax_cents = int(tax.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

        self.total_cents = taxable + self.tax_cents
        if self.payment_method is not None:
            self.change_cents = max(self.paid_cents - self.total_cents, 0)
        self.updated_at = utcnow()

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sale_number": self.sale_number,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_percent": str(self.tax_percent) if self.tax_percent is not None else None,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "change_cents": self.change_cents,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "item_count": self.item_count,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    One line of a sale.

    product_sku / product_name are value copies taken when the line is created.
    They are kept even if the product is later renamed.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "product_id", name="uq_sale_items_sale_product"),
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_sku = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    # Insertion order within the sale
    position = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="items")

    @classmethod
    def build(
        cls,
        *,
        product_id: int,
        product_sku: str,
        product_name: str,
        quantity: int,
        unit_price_cents: int,
    ) -> "SaleItem":
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Invalid quantity", details={"quantity": quantity})
        if isinstance(unit_price_cents, bool) or not isinstance(unit_price_cents, int) or unit_price_cents <= 0:
            raise ValidationError("Invalid price", details={"unit_price_cents": unit_price_cents})
        if not product_sku:
            raise ValidationError("product SKU is required")
        if not product_name:
            raise ValidationError("product name is required")

        return cls(
            product_id=product_id,
            product_sku=product_sku,
            product_name=product_name,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            total_price_cents=unit_price_cents * quantity,
            created_at=utcnow(),
        )

    @classmethod
    def from_product(cls, product, quantity: int) -> "SaleItem":
        return cls.build(
            product_id=product.id,
            product_sku=product.sku,
            product_name=product.name,
            quantity=quantity,
            unit_price_cents=product.price_cents,
        )

    def set_quantity(self, quantity: int) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Invalid quantity", details={"quantity": quantity})
        self.quantity = quantity
        self.total_price_cents = self.unit_price_cents * quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_sku": self.product_sku,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "position": self.position,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(SaleItem, "before_update")
def _keep_product_snapshot(mapper, connection, target):
    state = inspect(target)
    for attr in ("product_id", "product_sku", "product_name", "unit_price_cents"):
        if state.attrs[attr].history.has_changes():
            raise InvalidStateError(
                "Sale item product snapshot is immutable",
                details={"field": attr, "sale_item_id": target.id},
            )
