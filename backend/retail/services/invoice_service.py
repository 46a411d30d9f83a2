"""
Invoice Service: invoices issued for completed sales

STATES: draft -> generated -> sent -> paid
        draft | generated | sent -> paid | cancelled (both terminal)

- An invoice is created from a COMPLETED sale only, one invoice per sale.
  Creating again for the same sale returns the existing invoice unchanged.
- Customer details, amounts and lines are copied from the sale; the copies
  do not follow later product renames or price changes.
- Invoice numbers come from the per-tenant "invoice" document sequence
  ("I-001-0001"), allocated in the same transaction that inserts the invoice.
- Invoices never touch stock.
"""

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, InvalidStateError, NotFoundError
from ..models import Invoice
from ..repositories import InvoiceFilter, Page, Pagination
from ..time_utils import to_utc_z, utcnow
from . import audit_service
from .document_service import next_document_number
from .unit_of_work import run_in_transaction, run_read

INVOICE_DOCUMENT_TYPE = "invoice"
INVOICE_NUMBER_PREFIX = "I"


def _invoice_state(invoice: Invoice) -> dict:
    return {
        "status": invoice.status,
        "total_cents": invoice.total_cents,
        "due_date": to_utc_z(invoice.due_date),
        "paid_at": to_utc_z(invoice.paid_at),
    }


def create_invoice(
    tenant_id: int,
    sale_id: int,
    *,
    customer_address: str | None = None,
    due_date=None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Invoice:
    def _work(uow):
        sale = uow.sales.get_by_id(sale_id, for_update=True)
        if sale is None:
            raise NotFoundError("sale", details={"sale_id": sale_id})
        if not sale.is_completed:
            raise InvalidStateError(
                "Invoices can only be created for completed sales",
                details={"sale_number": sale.sale_number, "status": sale.status},
            )

        existing = uow.invoices.get_by_sale(sale.id)
        if existing is not None:
            return existing, existing.invoice_number, sale.sale_number, False

        invoice_number = next_document_number(
            tenant_id=tenant_id,
            document_type=INVOICE_DOCUMENT_TYPE,
            prefix=INVOICE_NUMBER_PREFIX,
            session=uow.session,
        )
        if uow.invoices.get_by_number(invoice_number) is not None:
            raise ConflictError("Invoice number already exists", details={"invoice_number": invoice_number})

        invoice = Invoice.from_sale(
            invoice_number=invoice_number,
            sale=sale,
            sale_items=uow.sale_items.list_for_sale(sale.id),
            created_by_user_id=user_id,
        )
        if customer_address:
            invoice.set_customer_address(customer_address)
        if due_date is not None:
            invoice.set_due_date(due_date)
        if notes:
            invoice.add_notes(notes)
        uow.invoices.create(invoice)
        return invoice, invoice_number, sale.sale_number, True

    invoice, invoice_number, sale_number, created = run_in_transaction(
        tenant_id, _work, action="create invoice"
    )

    if not created:
        current_app.logger.info(
            "Invoice already exists: tenant_id=%s sale_number=%s invoice_number=%s",
            tenant_id, sale_number, invoice_number,
        )
        return invoice

    current_app.logger.info(
        "Invoice created: tenant_id=%s invoice_number=%s sale_number=%s user_id=%s",
        tenant_id, invoice_number, sale_number, user_id,
    )
    audit_service.log_event(
        tenant_id=tenant_id,
        user_id=user_id,
        action="invoice.create",
        resource="invoice",
        resource_id=invoice_number,
        new_value={
            "invoice_number": invoice_number,
            "sale_number": sale_number,
            "total_cents": invoice.total_cents,
            "customer_name": invoice.customer_name,
        },
    )
    return invoice


def _mutate_invoice(tenant_id: int, invoice_id: int, mutate, *, action: str, user_id: int | None) -> Invoice:
    def _work(uow):
        invoice = uow.invoices.get_by_id(invoice_id, for_update=True)
        if invoice is None:
            raise NotFoundError("invoice", details={"invoice_id": invoice_id})
        old_value = _invoice_state(invoice)
        mutate(invoice)
        uow.invoices.update(invoice)
        return invoice, invoice.invoice_number, old_value, _invoice_state(invoice)

    invoice, invoice_number, old_value, new_value = run_in_transaction(
        tenant_id, _work, action=action.replace("_", " ") + " invoice"
    )

    current_app.logger.info(
        "Invoice %s: tenant_id=%s invoice_number=%s user_id=%s %s -> %s",
        action, tenant_id, invoice_number, user_id, old_value["status"], new_value["status"],
    )
    audit_service.log_event(
        tenant_id=tenant_id,
        user_id=user_id,
        action=f"invoice.{action}",
        resource="invoice",
        resource_id=invoice_number,
        old_value=old_value,
        new_value=new_value,
    )
    return invoice


def mark_invoice_generated(tenant_id: int, invoice_id: int, *, user_id: int | None = None) -> Invoice:
    return _mutate_invoice(tenant_id, invoice_id, Invoice.mark_generated, action="generate", user_id=user_id)


def mark_invoice_sent(tenant_id: int, invoice_id: int, *, user_id: int | None = None) -> Invoice:
    return _mutate_invoice(tenant_id, invoice_id, Invoice.mark_sent, action="send", user_id=user_id)


def mark_invoice_paid(tenant_id: int, invoice_id: int, *, user_id: int | None = None) -> Invoice:
    return _mutate_invoice(tenant_id, invoice_id, Invoice.mark_paid, action="mark_paid", user_id=user_id)


def cancel_invoice(tenant_id: int, invoice_id: int, *, user_id: int | None = None) -> Invoice:
    return _mutate_invoice(tenant_id, invoice_id, Invoice.cancel, action="cancel", user_id=user_id)


# =============================================================================
# Reads
# =============================================================================

def get_invoice(tenant_id: int, invoice_id: int) -> Invoice:
    def _work(uow):
        invoice = uow.invoices.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", details={"invoice_id": invoice_id})
        return invoice

    return run_read(tenant_id, _work, action="get invoice")


def get_invoice_by_number(tenant_id: int, invoice_number: str) -> Invoice:
    def _work(uow):
        invoice = uow.invoices.get_by_number(invoice_number)
        if invoice is None:
            raise NotFoundError("invoice", details={"invoice_number": invoice_number})
        return invoice

    return run_read(tenant_id, _work, action="get invoice")


def list_invoices(tenant_id: int, filters: InvoiceFilter | None = None, pagination: Pagination | None = None) -> Page:
    return run_read(tenant_id, lambda uow: uow.invoices.list(filters, pagination), action="list invoices")


def list_overdue_invoices(tenant_id: int, pagination: Pagination | None = None, *, now=None) -> Page:
    now = now or utcnow()
    return run_read(tenant_id, lambda uow: uow.invoices.list_overdue(now, pagination), action="list overdue invoices")
