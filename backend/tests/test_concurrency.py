# Overview: Pytest coverage for concurrent stock and sale operations.

"""
Concurrency tests against a file-backed SQLite database.

Each worker thread runs in its own application context (own session and
connection). Writers are serialized by BEGIN IMMEDIATE, so the second
completion re-reads the stock row after the first commits.
"""

import threading

import pytest

from retail import create_app
from retail.errors import InsufficientStockError, RetailError
from retail.extensions import db
from retail.models import StockMovement, Tenant
from retail.services import products_service, sales_service, stock_service, subscription_service


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'TX_RETRY_ATTEMPTS': 5,
        'TX_RETRY_BACKOFF': 0.01,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _seed(app, quantity):
    with app.app_context():
        tenant = Tenant(name="Race Shop", code="RACE", is_active=True)
        db.session.add(tenant)
        db.session.commit()
        subscription_service.create_subscription(tenant.id)
        product = products_service.create_product(
            tenant.id, sku="HOT-001", name="Hot Item", category="Misc", price_cents=100, initial_quantity=quantity
        )
        return tenant.id, product.id


def _run_concurrently(app, target, args_list):
    barrier = threading.Barrier(len(args_list))
    results = []
    lock = threading.Lock()

    def worker(*args):
        with app.app_context():
            barrier.wait()
            try:
                outcome = target(*args)
            except RetailError as exc:
                outcome = exc
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=args) for args in args_list]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


class TestConcurrentSales:
    def test_last_unit_sold_once(self, file_app):
        tenant_id, product_id = _seed(file_app, quantity=1)

        with file_app.app_context():
            sale_ids = []
            for _ in range(2):
                sale = sales_service.create_sale(tenant_id)
                sales_service.add_sale_item(tenant_id, sale.id, product_id, 1)
                sale_ids.append(sale.id)

        def complete(sale_id):
            return sales_service.complete_sale(tenant_id, sale_id, paid_cents=100, payment_method="cash").status

        results = _run_concurrently(file_app, complete, [(sale_id,) for sale_id in sale_ids])

        assert sorted(type(r).__name__ for r in results) == ["InsufficientStockError", "str"]
        assert [r for r in results if isinstance(r, str)] == ["completed"]
        assert any(isinstance(r, InsufficientStockError) for r in results)

        with file_app.app_context():
            assert stock_service.get_stock(tenant_id, product_id).snapshot() == {
                "available_qty": 0, "reserved_qty": 0, "total_qty": 0,
            }
            sold = db.session.query(StockMovement).filter_by(product_id=product_id, reason="sale").count()
            assert sold == 1

    def test_concurrent_adds_to_one_sale(self, file_app):
        tenant_id, product_id = _seed(file_app, quantity=5)
        with file_app.app_context():
            sale_id = sales_service.create_sale(tenant_id).id

        def add(_):
            return sales_service.add_sale_item(tenant_id, sale_id, product_id, 5).item_count

        results = _run_concurrently(file_app, add, [(0,), (1,)])

        assert [r for r in results if not isinstance(r, Exception)] == [5]
        assert sum(isinstance(r, InsufficientStockError) for r in results) == 1

        with file_app.app_context():
            sales_service.complete_sale(tenant_id, sale_id, paid_cents=500, payment_method="card")
            assert stock_service.get_stock(tenant_id, product_id).available_qty == 0

    def test_concurrent_adds_to_two_sales_defer_to_completion(self, file_app):
        tenant_id, product_id = _seed(file_app, quantity=5)
        with file_app.app_context():
            sale_ids = [sales_service.create_sale(tenant_id).id for _ in range(2)]

        def add(sale_id):
            return sales_service.add_sale_item(tenant_id, sale_id, product_id, 5).item_count

        results = _run_concurrently(file_app, add, [(sale_id,) for sale_id in sale_ids])

        # Pending lines hold no stock, so both adds pass the availability check
        assert results == [5, 5]
        with file_app.app_context():
            assert stock_service.get_stock(tenant_id, product_id).available_qty == 5

        def complete(sale_id):
            return sales_service.complete_sale(tenant_id, sale_id, paid_cents=500, payment_method="cash").status

        results = _run_concurrently(file_app, complete, [(sale_id,) for sale_id in sale_ids])

        assert [r for r in results if isinstance(r, str)] == ["completed"]
        assert sum(isinstance(r, InsufficientStockError) for r in results) == 1
        with file_app.app_context():
            assert stock_service.get_stock(tenant_id, product_id).available_qty == 0

    def test_concurrent_reservations_never_oversell(self, file_app):
        tenant_id, product_id = _seed(file_app, quantity=5)

        def reserve(reference):
            return stock_service.reserve_stock(tenant_id, product_id, 2, reference=reference).reserved_qty

        results = _run_concurrently(file_app, reserve, [(f"CART-{n}",) for n in range(4)])

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, InsufficientStockError)]
        assert len(successes) == 2
        assert len(failures) == 2

        with file_app.app_context():
            assert stock_service.get_stock(tenant_id, product_id).snapshot() == {
                "available_qty": 1, "reserved_qty": 4, "total_qty": 5,
            }

    def test_sale_numbers_are_unique(self, file_app):
        tenant_id, _ = _seed(file_app, quantity=0)

        def create(_):
            return sales_service.create_sale(tenant_id).sale_number

        results = _run_concurrently(file_app, create, [(n,) for n in range(4)])

        assert all(isinstance(r, str) for r in results)
        assert sorted(results) == [f"S-{tenant_id:03d}-{n:04d}" for n in range(1, 5)]
