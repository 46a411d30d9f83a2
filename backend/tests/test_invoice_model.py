# Overview: Pytest coverage for the Invoice aggregate and its status lifecycle.

from datetime import timedelta

import pytest

from retail.errors import InvalidStateError, ValidationError
from retail.models import Invoice, InvoiceStatus, Sale, SaleItem
from retail.time_utils import utcnow


def _sale(complete=True):
    sale = Sale.open(tenant_id=1, sale_number="S-001-0009", customer_name="Grace Hopper", created_by_user_id=3)
    sale.add_item(SaleItem.build(
        product_id=1, product_sku="LAMP-01", product_name="Desk Lamp", quantity=2, unit_price_cents=2500,
    ))
    sale.add_item(SaleItem.build(
        product_id=2, product_sku="BULB-01", product_name="Bulb", quantity=4, unit_price_cents=300,
    ))
    sale.apply_discount(200)
    sale.apply_tax(10)
    if complete:
        sale.process_payment(7000, "card")
        sale.complete()
    return sale


def _invoice(**kwargs):
    return Invoice.from_sale(invoice_number="I-001-0001", sale=_sale(), created_by_user_id=3, **kwargs)


class TestInvoiceFromSale:
    def test_copies_sale(self):
        sale = _sale()
        invoice = Invoice.from_sale(invoice_number="I-001-0001", sale=sale, created_by_user_id=3)

        assert invoice.status == InvoiceStatus.DRAFT.value
        assert invoice.customer_name == "Grace Hopper"
        assert (invoice.subtotal_cents, invoice.discount_cents, invoice.tax_cents, invoice.total_cents) == (
            sale.subtotal_cents, 200, sale.tax_cents, sale.total_cents,
        )
        assert invoice.total_cents == 6600
        assert invoice.paid_cents == 7000
        assert invoice.payment_method == "card"
        assert invoice.item_count == 6

    def test_lines_are_snapshots_in_order(self):
        invoice = _invoice()
        assert [(i.position, i.product_sku, i.product_name, i.quantity, i.total_price_cents) for i in invoice.items] == [
            (1, "LAMP-01", "Desk Lamp", 2, 5000),
            (2, "BULB-01", "Bulb", 4, 1200),
        ]

    def test_pending_sale_rejected(self):
        with pytest.raises(InvalidStateError):
            Invoice.from_sale(invoice_number="I-001-0001", sale=_sale(complete=False))

    def test_requires_number_and_sale(self):
        with pytest.raises(ValidationError):
            Invoice.from_sale(invoice_number="", sale=_sale())
        with pytest.raises(ValidationError):
            Invoice.from_sale(invoice_number="I-001-0001", sale=None)


class TestInvoiceLifecycle:
    def test_full_lifecycle(self):
        invoice = _invoice()
        invoice.mark_generated()
        invoice.mark_sent()
        invoice.mark_paid()
        assert invoice.status == "paid"
        assert invoice.paid_at is not None

    def test_draft_can_be_paid_directly(self):
        invoice = _invoice()
        invoice.mark_paid()
        assert invoice.is_paid

    def test_send_requires_generated(self):
        invoice = _invoice()
        with pytest.raises(InvalidStateError):
            invoice.mark_sent()
        assert invoice.status == "draft"

    def test_generate_only_once(self):
        invoice = _invoice()
        invoice.mark_generated()
        with pytest.raises(InvalidStateError, match="already generated"):
            invoice.mark_generated()

    def test_paid_is_terminal(self):
        invoice = _invoice()
        invoice.mark_paid()
        with pytest.raises(InvalidStateError, match="already paid"):
            invoice.mark_paid()
        with pytest.raises(InvalidStateError):
            invoice.cancel()
        assert invoice.cancelled_at is None

    def test_cancelled_is_terminal(self):
        invoice = _invoice()
        invoice.mark_generated()
        invoice.cancel()
        assert invoice.is_cancelled
        with pytest.raises(InvalidStateError):
            invoice.mark_paid()
        with pytest.raises(InvalidStateError, match="already cancelled"):
            invoice.cancel()


class TestInvoiceDetails:
    def test_due_date_not_before_creation(self):
        invoice = _invoice()
        with pytest.raises(ValidationError):
            invoice.set_due_date(invoice.created_at - timedelta(days=1))
        assert invoice.due_date is None

    def test_details_locked_once_closed(self):
        invoice = _invoice()
        invoice.set_customer_address("1 Harbour Road")
        invoice.mark_paid()
        with pytest.raises(InvalidStateError):
            invoice.set_customer_address("2 Harbour Road")
        with pytest.raises(InvalidStateError):
            invoice.set_due_date(utcnow() + timedelta(days=30))
        assert invoice.customer_address == "1 Harbour Road"

    def test_overdue(self):
        invoice = _invoice()
        assert not invoice.is_overdue()

        invoice.set_due_date(invoice.created_at + timedelta(days=14))
        assert not invoice.is_overdue(now=invoice.created_at + timedelta(days=1))
        assert invoice.is_overdue(now=invoice.created_at + timedelta(days=15))

        invoice.mark_paid()
        assert not invoice.is_overdue(now=invoice.created_at + timedelta(days=15))

    def test_to_dict(self):
        data = _invoice().to_dict()
        assert data["invoice_number"] == "I-001-0001"
        assert data["status"] == "draft"
        assert data["is_overdue"] is False
        assert len(data["items"]) == 2
        assert "items" not in _invoice().to_dict(include_items=False)
