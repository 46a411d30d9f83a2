# Overview: Pytest coverage for stock quantity arithmetic.

"""
Stock arithmetic tests.

Verifies the three-quantity invariant (total = available + reserved, all
non-negative) across every mutation, and that a rejected mutation leaves
the record exactly as it was.
"""

import pytest

from retail.errors import InsufficientStockError, InvalidStateError, ValidationError
from retail.models import Stock


def _stock(available=10, reserved=0, reorder_level=0):
    stock = Stock.open(tenant_id=1, product_id=1, initial_qty=available, reorder_level=reorder_level)
    if reserved:
        stock.reserve_stock(reserved)
    return stock


def _assert_invariant(stock):
    assert stock.total_qty == stock.available_qty + stock.reserved_qty
    assert stock.available_qty >= 0
    assert stock.reserved_qty >= 0


class TestStockOpen:
    def test_open_sets_total(self):
        stock = Stock.open(tenant_id=1, product_id=1, initial_qty=7)
        assert stock.snapshot() == {"available_qty": 7, "reserved_qty": 0, "total_qty": 7}
        assert stock.last_movement_at is not None

    def test_open_empty_has_no_movement_time(self):
        stock = Stock.open(tenant_id=1, product_id=1)
        assert stock.total_qty == 0
        assert stock.last_movement_at is None

    @pytest.mark.parametrize("initial_qty", [-1, 1.5, True, "3"])
    def test_open_rejects_bad_quantity(self, initial_qty):
        with pytest.raises(ValidationError):
            Stock.open(tenant_id=1, product_id=1, initial_qty=initial_qty)

    def test_open_rejects_negative_reorder_level(self):
        with pytest.raises(ValidationError):
            Stock.open(tenant_id=1, product_id=1, reorder_level=-5)


class TestStockMutations:
    def test_add_stock(self):
        stock = _stock(available=10)
        stock.add_stock(5)
        assert stock.snapshot() == {"available_qty": 15, "reserved_qty": 0, "total_qty": 15}

    def test_remove_stock(self):
        stock = _stock(available=10)
        stock.remove_stock(4)
        assert stock.available_qty == 6
        assert stock.total_qty == 6

    def test_remove_entire_available(self):
        stock = _stock(available=3)
        stock.remove_stock(3)
        assert stock.is_out_of_stock()
        _assert_invariant(stock)

    def test_reserve_then_release_round_trip(self):
        stock = _stock(available=10)
        stock.reserve_stock(4)
        assert stock.snapshot() == {"available_qty": 6, "reserved_qty": 4, "total_qty": 10}

        stock.release_reserved_stock(4)
        assert stock.snapshot() == {"available_qty": 10, "reserved_qty": 0, "total_qty": 10}

    def test_reserve_then_confirm(self):
        """{available 10, reserved 0} -> reserve 4 -> confirm 4 -> total 6."""
        stock = _stock(available=10)
        stock.reserve_stock(4)
        stock.confirm_reserved_stock(4)
        assert stock.snapshot() == {"available_qty": 6, "reserved_qty": 0, "total_qty": 6}

    def test_invariant_holds_after_mixed_sequence(self):
        stock = _stock(available=20)
        stock.reserve_stock(8)
        stock.add_stock(2)
        stock.release_reserved_stock(3)
        stock.confirm_reserved_stock(5)
        stock.remove_stock(10)
        _assert_invariant(stock)
        assert stock.snapshot() == {"available_qty": 7, "reserved_qty": 0, "total_qty": 7}


class TestStockRejections:
    """A rejected mutation changes nothing."""

    @pytest.mark.parametrize("operation", ["add_stock", "remove_stock", "reserve_stock",
                                           "release_reserved_stock", "confirm_reserved_stock"])
    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_rejected(self, operation, quantity):
        stock = _stock(available=10, reserved=2)
        before = stock.snapshot()
        with pytest.raises(ValidationError):
            getattr(stock, operation)(quantity)
        assert stock.snapshot() == before

    def test_remove_more_than_available(self):
        stock = _stock(available=5, reserved=3)
        before = stock.snapshot()
        with pytest.raises(InsufficientStockError) as exc_info:
            stock.remove_stock(6)
        assert exc_info.value.requested == 6
        assert exc_info.value.available == 2
        assert stock.snapshot() == before

    def test_reserve_more_than_available(self):
        stock = _stock(available=5)
        before = stock.snapshot()
        with pytest.raises(InsufficientStockError):
            stock.reserve_stock(6)
        assert stock.snapshot() == before

    def test_release_more_than_reserved(self):
        stock = _stock(available=10, reserved=2)
        before = stock.snapshot()
        with pytest.raises(InvalidStateError):
            stock.release_reserved_stock(3)
        assert stock.snapshot() == before

    def test_confirm_more_than_reserved(self):
        stock = _stock(available=10, reserved=2)
        before = stock.snapshot()
        with pytest.raises(InvalidStateError):
            stock.confirm_reserved_stock(3)
        assert stock.snapshot() == before

    def test_repeated_rejection_is_idempotent(self):
        stock = _stock(available=1)
        before = stock.snapshot()
        for _ in range(3):
            with pytest.raises(InsufficientStockError):
                stock.remove_stock(2)
        assert stock.snapshot() == before


class TestStockQueries:
    def test_low_stock_at_reorder_level(self):
        stock = _stock(available=5, reorder_level=5)
        assert stock.is_low_stock()
        assert stock.stock_status == "Low Stock"

    def test_in_stock_above_reorder_level(self):
        stock = _stock(available=6, reorder_level=5)
        assert not stock.is_low_stock()
        assert stock.stock_status == "In Stock"

    def test_out_of_stock(self):
        stock = _stock(available=0)
        assert stock.is_out_of_stock()
        assert stock.stock_status == "Out of Stock"

    def test_can_fulfill_order(self):
        stock = _stock(available=8, reserved=4)
        assert stock.total_qty == 8
        assert stock.can_fulfill_order(4)
        assert not stock.can_fulfill_order(5)

    def test_update_reorder_level(self):
        stock = _stock()
        stock.update_reorder_level(12)
        assert stock.reorder_level == 12
        with pytest.raises(ValidationError):
            stock.update_reorder_level(-1)
        assert stock.reorder_level == 12
