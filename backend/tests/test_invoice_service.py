# Overview: Pytest coverage for invoices issued from completed sales.

from datetime import timedelta

import pytest

from retail.errors import InvalidStateError, NotFoundError
from retail.models import AuditEvent, InvoiceItem
from retail.repositories import InvoiceFilter
from retail.services import invoice_service, products_service, sales_service, stock_service
from retail.time_utils import utcnow


def _completed_sale(tenant, *lines, customer_name="Ada Lovelace"):
    sale = sales_service.create_sale(tenant.id, customer_name=customer_name, customer_email="ada@example.com")
    for product, quantity in lines:
        sales_service.add_sale_item(tenant.id, sale.id, product.id, quantity)
    sale = sales_service.get_sale(tenant.id, sale.id)
    return sales_service.complete_sale(tenant.id, sale.id, paid_cents=sale.total_cents, payment_method="card")


class TestCreateInvoice:
    def test_invoice_copies_completed_sale(self, db_session, tenant_a, make_product):
        lamp = make_product(tenant_a, sku="LAMP-01", name="Desk Lamp", price_cents=2500, quantity=5)
        bulb = make_product(tenant_a, sku="BULB-01", name="Bulb", price_cents=300, quantity=20)
        sale = _completed_sale(tenant_a, (lamp, 1), (bulb, 4))

        invoice = invoice_service.create_invoice(tenant_a.id, sale.id, notes="net 30", user_id=7)

        assert invoice.invoice_number == f"I-{tenant_a.id:03d}-0001"
        assert invoice.status == "draft"
        assert invoice.sale_id == sale.id
        assert invoice.customer_name == "Ada Lovelace"
        assert invoice.customer_email == "ada@example.com"
        assert invoice.total_cents == sale.total_cents == 3700
        assert invoice.notes == "net 30"
        assert [(i.position, i.product_sku, i.quantity, i.total_price_cents) for i in invoice.items] == [
            (1, "LAMP-01", 1, 2500),
            (2, "BULB-01", 4, 1200),
        ]

    def test_invoices_leave_stock_alone(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        sale = _completed_sale(tenant_a, (product, 2))
        invoice_service.create_invoice(tenant_a.id, sale.id)
        assert stock_service.get_stock(tenant_a.id, product.id).available_qty == 3

    def test_pending_sale_rejected(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        pending = sales_service.create_sale(tenant_a.id)
        sales_service.add_sale_item(tenant_a.id, pending.id, product.id, 1)

        with pytest.raises(InvalidStateError):
            invoice_service.create_invoice(tenant_a.id, pending.id)

        # A rejected request does not use up an invoice number
        sale = _completed_sale(tenant_a, (product, 1))
        invoice = invoice_service.create_invoice(tenant_a.id, sale.id)
        assert invoice.invoice_number == f"I-{tenant_a.id:03d}-0001"

    def test_cancelled_sale_rejected(self, db_session, tenant_a):
        sale = sales_service.create_sale(tenant_a.id)
        sales_service.cancel_sale(tenant_a.id, sale.id)
        with pytest.raises(InvalidStateError):
            invoice_service.create_invoice(tenant_a.id, sale.id)

    def test_unknown_sale(self, db_session, tenant_a):
        with pytest.raises(NotFoundError):
            invoice_service.create_invoice(tenant_a.id, 424242)

    def test_second_create_returns_existing(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        sale = _completed_sale(tenant_a, (product, 1))

        first = invoice_service.create_invoice(tenant_a.id, sale.id, user_id=2)
        second = invoice_service.create_invoice(tenant_a.id, sale.id, user_id=2)

        assert second.id == first.id
        assert invoice_service.list_invoices(tenant_a.id).total == 1
        assert db_session.query(AuditEvent).filter_by(action="invoice.create").count() == 1

    def test_numbers_are_sequential(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        first = invoice_service.create_invoice(tenant_a.id, _completed_sale(tenant_a, (product, 1)).id)
        second = invoice_service.create_invoice(tenant_a.id, _completed_sale(tenant_a, (product, 1)).id)
        assert (first.invoice_number, second.invoice_number) == (
            f"I-{tenant_a.id:03d}-0001", f"I-{tenant_a.id:03d}-0002",
        )

    def test_due_date_and_address(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        sale = _completed_sale(tenant_a, (product, 1))
        due = utcnow() + timedelta(days=30)

        invoice = invoice_service.create_invoice(
            tenant_a.id, sale.id, customer_address="1 Harbour Road", due_date=due
        )
        assert invoice.customer_address == "1 Harbour Road"
        assert invoice.due_date == due


class TestInvoiceSnapshot:
    def test_product_rename_keeps_invoice_lines(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, sku="TEA-001", name="Green Tea", price_cents=450, quantity=10)
        invoice = invoice_service.create_invoice(tenant_a.id, _completed_sale(tenant_a, (product, 2)).id)

        products_service.update_product(tenant_a.id, product.id, {"name": "Matcha", "price_cents": 900})

        reloaded = invoice_service.get_invoice(tenant_a.id, invoice.id)
        assert (reloaded.items[0].product_name, reloaded.items[0].unit_price_cents) == ("Green Tea", 450)

    def test_lines_cannot_be_edited(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=10)
        invoice_service.create_invoice(tenant_a.id, _completed_sale(tenant_a, (product, 2)).id)

        line = db_session.query(InvoiceItem).one()
        line.product_name = "Something else"
        with pytest.raises(InvalidStateError):
            db_session.flush()
        db_session.rollback()


class TestInvoiceStatus:
    def test_mark_paid(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        invoice = invoice_service.create_invoice(tenant_a.id, _completed_sale(tenant_a, (product, 1)).id)

        invoice_service.mark_invoice_generated(tenant_a.id, invoice.id)
        invoice_service.mark_invoice_sent(tenant_a.id, invoice.id)
        paid = invoice_service.mark_invoice_paid(tenant_a.id, invoice.id, user_id=9)

        assert paid.status == "paid"
        assert paid.paid_at is not None
        event = db_session.query(AuditEvent).filter_by(action="invoice.mark_paid").one()
        assert event.user_id == 9
        assert (event.old_value["status"], event.new_value["status"]) == ("sent", "paid")

    def test_paid_cannot_be_cancelled(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        invoice = invoice_service.create_invoice(tenant_a.id, _completed_sale(tenant_a, (product, 1)).id)
        invoice_service.mark_invoice_paid(tenant_a.id, invoice.id)

        with pytest.raises(InvalidStateError):
            invoice_service.cancel_invoice(tenant_a.id, invoice.id)
        assert invoice_service.get_invoice(tenant_a.id, invoice.id).status == "paid"

    def test_cancel(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        invoice = invoice_service.create_invoice(tenant_a.id, _completed_sale(tenant_a, (product, 1)).id)

        cancelled = invoice_service.cancel_invoice(tenant_a.id, invoice.id)
        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        with pytest.raises(InvalidStateError):
            invoice_service.mark_invoice_paid(tenant_a.id, invoice.id)

    def test_unknown_invoice(self, db_session, tenant_a):
        with pytest.raises(NotFoundError):
            invoice_service.mark_invoice_paid(tenant_a.id, 424242)


class TestInvoiceReads:
    def test_lookup_by_number(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        invoice = invoice_service.create_invoice(tenant_a.id, _completed_sale(tenant_a, (product, 1)).id)

        found = invoice_service.get_invoice_by_number(tenant_a.id, invoice.invoice_number)
        assert found.id == invoice.id
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice_by_number(tenant_a.id, "I-999-9999")

    def test_filters(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=10)
        first_sale = _completed_sale(tenant_a, (product, 1))
        first = invoice_service.create_invoice(tenant_a.id, first_sale.id)
        invoice_service.create_invoice(tenant_a.id, _completed_sale(tenant_a, (product, 1)).id)
        invoice_service.mark_invoice_paid(tenant_a.id, first.id)

        assert invoice_service.list_invoices(tenant_a.id).total == 2
        paid = invoice_service.list_invoices(tenant_a.id, InvoiceFilter(status="paid"))
        assert [i.id for i in paid.items] == [first.id]
        by_sale = invoice_service.list_invoices(tenant_a.id, InvoiceFilter(sale_id=first_sale.id))
        assert [i.id for i in by_sale.items] == [first.id]

    def test_overdue(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=10)
        due = utcnow() + timedelta(days=7)
        late = invoice_service.create_invoice(tenant_a.id, _completed_sale(tenant_a, (product, 1)).id, due_date=due)
        settled = invoice_service.create_invoice(
            tenant_a.id, _completed_sale(tenant_a, (product, 1)).id, due_date=due
        )
        invoice_service.create_invoice(tenant_a.id, _completed_sale(tenant_a, (product, 1)).id)
        invoice_service.mark_invoice_paid(tenant_a.id, settled.id)

        assert invoice_service.list_overdue_invoices(tenant_a.id).total == 0
        page = invoice_service.list_overdue_invoices(tenant_a.id, now=due + timedelta(days=1))
        assert [i.id for i in page.items] == [late.id]
