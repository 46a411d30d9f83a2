# Overview: Transaction boundary for multi-write business operations.

"""
Unit of Work

A UnitOfWork spans one database transaction for one tenant. Every stock,
movement, sale and invoice write of a business operation goes through its
repositories, and either all of them commit or none do.

Usage:
    with UnitOfWork(tenant_id) as uow:
        stock = uow.stocks.get_by_product(product_id, for_update=True)
        stock.add_stock(5)
        uow.movements.create(movement)
        uow.commit()

Leaving the block without commit() rolls back. Any exception raised inside
the block, including KeyboardInterrupt/SystemExit, rolls back and re-raises.

A read-only unit of work (run_read) never takes the write lock and never
commits.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import InternalError, RetailError
from ..extensions import db
from ..repositories import (
    InvoiceRepository,
    MovementRepository,
    ProductRepository,
    SaleItemRepository,
    SaleRepository,
    StockRepository,
)
from .concurrency import begin_immediate_if_sqlite, run_with_retry


class UnitOfWork:
    def __init__(self, tenant_id: int, session=None, *, readonly: bool = False):
        self.tenant_id = tenant_id
        self.readonly = readonly
        self.session = session or db.session
        self.products = ProductRepository(self.session, tenant_id)
        self.stocks = StockRepository(self.session, tenant_id)
        self.movements = MovementRepository(self.session, tenant_id)
        self.sales = SaleRepository(self.session, tenant_id)
        self.sale_items = SaleItemRepository(self.session, tenant_id)
        self.invoices = InvoiceRepository(self.session, tenant_id)
        self._committed = False

    def __enter__(self) -> "UnitOfWork":
        if not self.readonly:
            begin_immediate_if_sqlite(self.session)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.rollback()
        elif not self.readonly and not self._committed:
            self.rollback()
        return False

    def commit(self) -> None:
        if self.readonly:
            raise RuntimeError("read-only unit of work cannot commit")
        self.session.commit()
        self._committed = True

    def rollback(self) -> None:
        self.session.rollback()


def run_in_transaction(tenant_id: int, work, *, action: str = "complete operation"):
    """
    Run work(uow) inside a UnitOfWork, commit, and return its result.

    - Lock contention / stale versions are retried (run_with_retry).
    - Business errors (RetailError) propagate unchanged.
    - Any other store failure is logged and wrapped as InternalError.
    """
    def _op():
        with UnitOfWork(tenant_id) as uow:
            result = work(uow)
            uow.commit()
            return result

    try:
        return run_with_retry(_op)
    except RetailError:
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Transaction failed: %s (tenant_id=%s)", action, tenant_id)
        raise InternalError(f"Failed to {action}", cause=exc) from exc


def run_read(tenant_id: int, work, *, action: str = "read data"):
    """Run work(uow) against a read-only UnitOfWork; nothing is committed."""
    try:
        with UnitOfWork(tenant_id, readonly=True) as uow:
            return work(uow)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Read failed: %s (tenant_id=%s)", action, tenant_id)
        raise InternalError(f"Failed to {action}", cause=exc) from exc
