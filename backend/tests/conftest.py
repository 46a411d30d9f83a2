"""
Pytest fixtures for retail backend tests.

Provides test database setup, tenant fixtures with subscriptions, a product
factory, and a test client with tenant header helpers.
"""

import pytest

from retail import create_app
from retail.extensions import db
from retail.models import Tenant
from retail.services import products_service, subscription_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TX_RETRY_BACKOFF': 0,
        'LOG_LEVEL': 'DEBUG',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (Core deletes bypass the ORM immutability hooks)
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_tenant(session, name, code, plan_type="starter", status="trial"):
    tenant = Tenant(name=name, code=code, is_active=True)
    session.add(tenant)
    session.commit()
    subscription_service.create_subscription(tenant.id, plan_type=plan_type, status=status)
    return tenant


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Tenant A (first tenant) on a starter trial."""
    return _make_tenant(db_session, "Tenant A - Acme Corp", "ACME")


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Tenant B (second tenant) on a starter trial."""
    return _make_tenant(db_session, "Tenant B - Beta Inc", "BETA")


@pytest.fixture(scope='function')
def make_tenant(db_session):
    """Factory for extra tenants (custom plan/status)."""
    counter = {"n": 0}

    def _factory(plan_type="starter", status="trial"):
        counter["n"] += 1
        return _make_tenant(db_session, f"Tenant {counter['n']}", f"T{counter['n']:03d}", plan_type, status)

    return _factory


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory creating a product plus its stock through the service layer."""
    counter = {"n": 0}

    def _factory(tenant, *, sku=None, name=None, price_cents=1000, quantity=0, reorder_level=0, category="General"):
        counter["n"] += 1
        return products_service.create_product(
            tenant.id,
            sku=sku or f"SKU-{counter['n']:04d}",
            name=name or f"Product {counter['n']}",
            category=category,
            price_cents=price_cents,
            initial_quantity=quantity,
            reorder_level=reorder_level,
            user_id=1,
        )

    return _factory


def tenant_headers(tenant, role="admin", user_id=1) -> dict:
    """Helper to build the gateway identity headers."""
    headers = {'X-Tenant-ID': str(tenant.id), 'X-User-ID': str(user_id)}
    if role:
        headers['X-User-Role'] = role
    return headers
