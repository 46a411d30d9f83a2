# Overview: Pytest coverage for ledger-backed stock mutations.

"""
Stock service tests.

Every successful mutation changes the stock row and appends exactly one
movement in the same transaction; every rejected one changes neither.
"""

import pytest

from retail.errors import InsufficientStockError, InvalidStateError, NotFoundError, ValidationError
from retail.models import AuditEvent, StockMovement
from retail.repositories import MovementFilter, Pagination
from retail.services import products_service, stock_service


def _movements(db_session, product):
    return (
        db_session.query(StockMovement)
        .filter_by(product_id=product.id)
        .order_by(StockMovement.id.asc())
        .all()
    )


def _levels(tenant, product):
    return stock_service.get_stock(tenant.id, product.id).snapshot()


class TestAdjustStock:
    def test_adjust_in(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=10)
        stock = stock_service.adjust_stock(
            tenant_a.id, product.id, movement_type="in", reason="purchase", quantity=5, reference="PO-7", user_id=3
        )
        assert stock.available_qty == 15
        assert stock.total_qty == 15

        movement = _movements(db_session, product)[-1]
        assert (movement.type, movement.reason, movement.quantity) == ("in", "purchase", 5)
        assert movement.reference == "PO-7"
        assert movement.created_by_user_id == 3

    def test_adjust_out(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=10)
        stock_service.adjust_stock(tenant_a.id, product.id, movement_type="out", reason="damage", quantity=3)
        assert _levels(tenant_a, product) == {"available_qty": 7, "reserved_qty": 0, "total_qty": 7}
        assert _movements(db_session, product)[-1].reason == "damage"

    def test_insufficient_stock_changes_nothing(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, sku="LOW-001", quantity=2)
        before_movements = len(_movements(db_session, product))

        with pytest.raises(InsufficientStockError) as exc_info:
            stock_service.adjust_stock(tenant_a.id, product.id, movement_type="out", reason="damage", quantity=3)

        assert exc_info.value.product == "LOW-001"
        assert exc_info.value.details == {"requested": 3, "available": 2}
        assert _levels(tenant_a, product)["available_qty"] == 2
        assert len(_movements(db_session, product)) == before_movements

    @pytest.mark.parametrize("movement_type", ["reserved", "released", "sideways"])
    def test_adjust_rejects_non_adjustment_types(self, db_session, tenant_a, make_product, movement_type):
        product = make_product(tenant_a, quantity=5)
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(tenant_a.id, product.id, movement_type=movement_type, reason="adjustment", quantity=1)
        assert _levels(tenant_a, product)["available_qty"] == 5

    def test_zero_quantity_rejected(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(tenant_a.id, product.id, movement_type="in", reason="purchase", quantity=0)
        assert len(_movements(db_session, product)) == 1

    def test_unknown_reason_rejected_without_changes(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(tenant_a.id, product.id, movement_type="in", reason="gift", quantity=1)
        assert _levels(tenant_a, product)["available_qty"] == 5

    def test_unknown_product(self, db_session, tenant_a):
        with pytest.raises(NotFoundError):
            stock_service.adjust_stock(tenant_a.id, 999999, movement_type="in", reason="purchase", quantity=1)

    def test_adjustment_is_audited(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=1)
        stock_service.adjust_stock(tenant_a.id, product.id, movement_type="in", reason="return", quantity=2, user_id=9)

        event = db_session.query(AuditEvent).filter_by(action="stock.adjust").one()
        assert event.user_id == 9
        assert event.resource_id == str(product.id)
        assert event.old_value["available_qty"] == 1
        assert event.new_value["available_qty"] == 3
        assert "movement_id" in event.new_value


class TestReservations:
    def test_reserve_confirm_scenario(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=10)

        stock_service.reserve_stock(tenant_a.id, product.id, 4, reference="ORDER-1")
        assert _levels(tenant_a, product) == {"available_qty": 6, "reserved_qty": 4, "total_qty": 10}

        stock_service.confirm_reserved_stock(tenant_a.id, product.id, 4, reference="ORDER-1")
        assert _levels(tenant_a, product) == {"available_qty": 6, "reserved_qty": 0, "total_qty": 6}

        movements = stock_service.list_movements_by_reference(tenant_a.id, "ORDER-1")
        assert [(m.type, m.reason, m.quantity) for m in movements] == [
            ("reserved", "reservation", 4),
            ("out", "sale", 4),
        ]

    def test_reserve_release_round_trip(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=10)
        stock_service.reserve_stock(tenant_a.id, product.id, 3, reference="CART-9")
        stock_service.release_reserved_stock(tenant_a.id, product.id, 3, reference="CART-9")
        assert _levels(tenant_a, product) == {"available_qty": 10, "reserved_qty": 0, "total_qty": 10}
        assert _movements(db_session, product)[-1].type == "released"

    def test_release_more_than_reserved(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=10)
        stock_service.reserve_stock(tenant_a.id, product.id, 2, reference="R-1")
        count = len(_movements(db_session, product))

        with pytest.raises(InvalidStateError):
            stock_service.release_reserved_stock(tenant_a.id, product.id, 3, reference="R-1")

        assert _levels(tenant_a, product) == {"available_qty": 8, "reserved_qty": 2, "total_qty": 10}
        assert len(_movements(db_session, product)) == count

    def test_reserve_more_than_available(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=2)
        with pytest.raises(InsufficientStockError):
            stock_service.reserve_stock(tenant_a.id, product.id, 3, reference="R-2")
        assert _levels(tenant_a, product)["reserved_qty"] == 0

    def test_reserve_requires_reference(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=2)
        with pytest.raises(ValidationError):
            stock_service.reserve_stock(tenant_a.id, product.id, 1, reference="  ")

    def test_inactive_product_cannot_be_reserved(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=5)
        products_service.change_product_status(tenant_a.id, product.id, "inactive")
        with pytest.raises(ValidationError):
            stock_service.reserve_stock(tenant_a.id, product.id, 1, reference="R-3")


class TestStockReads:
    def test_reorder_level_and_low_stock(self, db_session, tenant_a, make_product):
        plenty = make_product(tenant_a, name="Apples", quantity=50)
        scarce = make_product(tenant_a, name="Bananas", quantity=3)

        stock_service.update_reorder_level(tenant_a.id, scarce.id, 5)
        stock_service.update_reorder_level(tenant_a.id, plenty.id, 10)

        page = stock_service.list_low_stock(tenant_a.id)
        assert [s.product_id for s in page.items] == [scarce.id]
        assert page.items[0].stock_status == "Low Stock"

    def test_list_stock_search_and_paging(self, db_session, tenant_a, make_product):
        for name in ("Alpha", "Beta", "Gamma"):
            make_product(tenant_a, name=name, quantity=1)

        page = stock_service.list_stock(tenant_a.id, pagination=Pagination(page=1, per_page=2))
        assert page.total == 3
        assert page.total_pages == 2
        assert [s.product.name for s in page.items] == ["Alpha", "Beta"]

    def test_list_movements_filtered(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=10)
        stock_service.adjust_stock(tenant_a.id, product.id, movement_type="out", reason="expiry", quantity=1)
        stock_service.adjust_stock(tenant_a.id, product.id, movement_type="out", reason="damage", quantity=2)

        page = stock_service.list_movements(tenant_a.id, MovementFilter(product_id=product.id, type="out"))
        assert page.total == 2
        # Newest first
        assert [m.reason for m in page.items] == ["damage", "expiry"]

    def test_get_stock_unknown_product(self, db_session, tenant_a):
        with pytest.raises(NotFoundError):
            stock_service.get_stock(tenant_a.id, 424242)
