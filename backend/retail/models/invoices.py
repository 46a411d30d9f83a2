from __future__ import annotations

from enum import Enum
from types import MappingProxyType

from sqlalchemy import event, inspect

from ..extensions import db
from ..errors import InvalidStateError, ValidationError
from ..time_utils import to_utc_z, utcnow


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    GENERATED = "generated"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"


INVOICE_STATUSES = frozenset(s.value for s in InvoiceStatus)

# Legal status transitions. PAID and CANCELLED are terminal.
INVOICE_STATUS_TRANSITIONS = MappingProxyType({
    InvoiceStatus.DRAFT.value: frozenset({
        InvoiceStatus.GENERATED.value, InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value,
    }),
    InvoiceStatus.GENERATED.value: frozenset({
        InvoiceStatus.SENT.value, InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value,
    }),
    InvoiceStatus.SENT.value: frozenset({InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value}),
    InvoiceStatus.PAID.value: frozenset(),
    InvoiceStatus.CANCELLED.value: frozenset(),
})

# Statuses that still expect a payment
OPEN_INVOICE_STATUSES = frozenset({
    InvoiceStatus.DRAFT.value, InvoiceStatus.GENERATED.value, InvoiceStatus.SENT.value,
})


class Invoice(db.Model):
    """
    Invoice issued for a completed sale.

    STATES: draft -> generated -> sent -> paid
            draft | generated | sent -> paid | cancelled (both terminal)

    Amounts, customer details and lines are copied from the sale when the
    invoice is created. One invoice per sale.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
        db.UniqueConstraint("tenant_id", "sale_id", name="uq_invoices_tenant_sale"),
        db.Index("ix_invoices_tenant_status_due", "tenant_id", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    # Human-readable number (e.g., "I-001-0007")
    invoice_number = db.Column(db.String(64), nullable=False, index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=InvoiceStatus.DRAFT.value, index=True)

    # Amounts in cents, copied from the sale
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(32), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        order_by="InvoiceItem.position",
        cascade="all, delete-orphan",
        lazy="select",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @classmethod
    def from_sale(cls, *, invoice_number: str, sale, sale_items=None, created_by_user_id: int | None = None) -> "Invoice":
        if not invoice_number:
            raise ValidationError("invoice number is required")
        if sale is None:
            raise ValidationError("sale is required")
        if not sale.is_completed:
            raise InvalidStateError(
                "Invoices can only be created for completed sales",
                details={"sale_number": sale.sale_number, "status": sale.status},
            )

        lines = sale_items if sale_items is not None else sale.items
        now = utcnow()
        invoice = cls(
            tenant_id=sale.tenant_id,
            sale_id=sale.id,
            invoice_number=invoice_number,
            customer_name=sale.customer_name,
            customer_email=sale.customer_email,
            customer_phone=sale.customer_phone,
            status=InvoiceStatus.DRAFT.value,
            subtotal_cents=sale.subtotal_cents,
            discount_cents=sale.discount_cents,
            tax_cents=sale.tax_cents,
            total_cents=sale.total_cents,
            paid_cents=sale.paid_cents,
            payment_method=sale.payment_method,
            notes=sale.notes,
            created_by_user_id=created_by_user_id,
            created_at=now,
            updated_at=now,
            items=[],
        )
        for position, line in enumerate(lines, start=1):
            item = InvoiceItem.from_sale_item(line)
            item.tenant_id = sale.tenant_id
            item.position = position
            invoice.items.append(item)
        return invoice

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID.value

    @property
    def is_cancelled(self) -> bool:
        return self.status == InvoiceStatus.CANCELLED.value

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def is_overdue(self, now=None) -> bool:
        if self.due_date is None or self.status not in OPEN_INVOICE_STATUSES:
            return False
        return (now or utcnow()) > self.due_date

    def _transition(self, target: InvoiceStatus) -> None:
        allowed = INVOICE_STATUS_TRANSITIONS[self.status]
        if target.value not in allowed:
            if self.status == target.value:
                message = f"Invoice is already {self.status}"
            else:
                message = f"Cannot mark {self.status} invoice as {target.value}"
            raise InvalidStateError(
                message,
                details={"invoice_number": self.invoice_number, "status": self.status, "target": target.value},
            )
        self.status = target.value
        self.updated_at = utcnow()

    # ------------------------------------------------------------------
    # Details
    # ------------------------------------------------------------------

    def set_customer_address(self, address: str | None) -> None:
        self._require_open("change customer details")
        self.customer_address = address
        self.updated_at = utcnow()

    def set_due_date(self, due_date) -> None:
        self._require_open("change the due date")
        if due_date is not None and self.created_at is not None and due_date < self.created_at:
            raise ValidationError(
                "due date cannot be before invoice creation date",
                details={"due_date": to_utc_z(due_date), "created_at": to_utc_z(self.created_at)},
            )
        self.due_date = due_date
        self.updated_at = utcnow()

    def add_notes(self, notes: str) -> None:
        self.notes = notes
        self.updated_at = utcnow()

    def _require_open(self, action: str) -> None:
        if self.status not in OPEN_INVOICE_STATUSES:
            raise InvalidStateError(
                f"Cannot {action}: invoice is {self.status}",
                details={"invoice_number": self.invoice_number, "status": self.status},
            )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def mark_generated(self) -> None:
        self._transition(InvoiceStatus.GENERATED)

    def mark_sent(self) -> None:
        self._transition(InvoiceStatus.SENT)

    def mark_paid(self) -> None:
        self._transition(InvoiceStatus.PAID)
        self.paid_at = self.updated_at

    def cancel(self) -> None:
        self._transition(InvoiceStatus.CANCELLED)
        self.cancelled_at = self.updated_at

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sale_id": self.sale_id,
            "invoice_number": self.invoice_number,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "item_count": self.item_count,
            "is_overdue": self.is_overdue(),
            "due_date": to_utc_z(self.due_date),
            "paid_at": to_utc_z(self.paid_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    """One invoice line; product SKU/name/price are value copies of the sale line."""
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_sku = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    position = db.Column(db.Integer, nullable=False, default=1)

    invoice = db.relationship("Invoice", back_populates="items")

    @classmethod
    def from_sale_item(cls, sale_item, description: str | None = None) -> "InvoiceItem":
        quantity = sale_item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Invalid quantity", details={"quantity": quantity})
        if not sale_item.unit_price_cents or sale_item.unit_price_cents <= 0:
            raise ValidationError("Invalid price", details={"unit_price_cents": sale_item.unit_price_cents})
        if not sale_item.product_sku:
            raise ValidationError("product SKU is required")
        if not sale_item.product_name:
            raise ValidationError("product name is required")

        return cls(
            product_id=sale_item.product_id,
            product_sku=sale_item.product_sku,
            product_name=sale_item.product_name,
            description=description,
            quantity=quantity,
            unit_price_cents=sale_item.unit_price_cents,
            total_price_cents=sale_item.unit_price_cents * quantity,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_sku": self.product_sku,
            "product_name": self.product_name,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "position": self.position,
        }


@event.listens_for(InvoiceItem, "before_update")
def _keep_invoice_line_snapshot(mapper, connection, target):
    state = inspect(target)
    for attr in ("product_id", "product_sku", "product_name", "quantity", "unit_price_cents", "total_price_cents"):
        if state.attrs[attr].history.has_changes():
            raise InvalidStateError(
                "Invoice lines are immutable",
                details={"field": attr, "invoice_item_id": target.id},
            )
