# Overview: Pytest coverage for the Sale aggregate and its state machine.

from decimal import Decimal

import pytest

from retail.errors import InvalidStateError, NotFoundError, ValidationError
from retail.models import Sale, SaleItem, SaleStatus


def _sale():
    return Sale.open(tenant_id=1, sale_number="S-001-0001", created_by_user_id=7)


def _item(product_id=1, quantity=1, unit_price_cents=5000, sku=None):
    return SaleItem.build(
        product_id=product_id,
        product_sku=sku or f"SKU-{product_id}",
        product_name=f"Product {product_id}",
        quantity=quantity,
        unit_price_cents=unit_price_cents,
    )


class TestSaleItem:
    def test_build_computes_line_total(self):
        item = _item(quantity=3, unit_price_cents=250)
        assert item.total_price_cents == 750

    @pytest.mark.parametrize("quantity", [0, -1, 2.5, True])
    def test_build_rejects_bad_quantity(self, quantity):
        with pytest.raises(ValidationError):
            _item(quantity=quantity)

    @pytest.mark.parametrize("price", [0, -100])
    def test_build_rejects_non_positive_price(self, price):
        with pytest.raises(ValidationError):
            _item(unit_price_cents=price)

    def test_build_requires_sku_and_name(self):
        with pytest.raises(ValidationError):
            SaleItem.build(product_id=1, product_sku="", product_name="X", quantity=1, unit_price_cents=1)
        with pytest.raises(ValidationError):
            SaleItem.build(product_id=1, product_sku="X", product_name="", quantity=1, unit_price_cents=1)

    def test_set_quantity_recomputes_total(self):
        item = _item(quantity=1, unit_price_cents=300)
        item.set_quantity(4)
        assert item.total_price_cents == 1200


class TestSaleTotals:
    def test_open_sale_is_pending_and_empty(self):
        sale = _sale()
        assert sale.status == SaleStatus.PENDING.value
        assert sale.total_cents == 0
        assert sale.items == []

    def test_open_requires_number(self):
        with pytest.raises(ValidationError):
            Sale.open(tenant_id=1, sale_number="")

    def test_discount_and_tax(self):
        """5000 x 2, discount 1000, tax 10% -> 9000 + 900 = 9900."""
        sale = _sale()
        sale.add_item(_item(quantity=2, unit_price_cents=5000))
        sale.apply_discount(1000)
        sale.apply_tax(10)

        assert sale.subtotal_cents == 10000
        assert sale.discount_cents == 1000
        assert sale.tax_cents == 900
        assert sale.total_cents == 9900

    def test_tax_rounds_half_up(self):
        sale = _sale()
        sale.add_item(_item(quantity=1, unit_price_cents=1005))
        sale.apply_tax(10)
        # 100.5 cents rounds up
        assert sale.tax_cents == 101
        assert sale.total_cents == 1106

    def test_fractional_tax_rate(self):
        sale = _sale()
        sale.add_item(_item(quantity=1, unit_price_cents=10000))
        sale.apply_tax("7.25")
        assert sale.tax_percent == Decimal("7.25")
        assert sale.tax_cents == 725

    def test_tax_recomputed_when_items_change(self):
        sale = _sale()
        sale.add_item(_item(product_id=1, quantity=1, unit_price_cents=1000))
        sale.apply_tax(10)
        sale.add_item(_item(product_id=2, quantity=1, unit_price_cents=1000))
        assert sale.tax_cents == 200
        assert sale.total_cents == 2200

    def test_adding_same_product_merges_line(self):
        sale = _sale()
        sale.add_item(_item(product_id=1, quantity=2, unit_price_cents=100))
        sale.add_item(_item(product_id=1, quantity=3, unit_price_cents=100))
        assert len(sale.items) == 1
        assert sale.items[0].quantity == 5
        assert sale.subtotal_cents == 500
        assert sale.item_count == 5

    def test_positions_follow_insertion_order(self):
        sale = _sale()
        for product_id in (3, 1, 2):
            sale.add_item(_item(product_id=product_id))
        assert [i.product_id for i in sale.items] == [3, 1, 2]
        assert [i.position for i in sale.items] == [1, 2, 3]

    def test_update_and_remove_item(self):
        sale = _sale()
        sale.add_item(_item(product_id=1, quantity=1, unit_price_cents=100))
        sale.add_item(_item(product_id=2, quantity=1, unit_price_cents=200))

        sale.update_item_quantity(1, 4)
        assert sale.subtotal_cents == 600

        sale.remove_item(2)
        assert sale.subtotal_cents == 400
        assert [i.product_id for i in sale.items] == [1]

    def test_remove_unknown_item(self):
        sale = _sale()
        with pytest.raises(NotFoundError):
            sale.remove_item(99)

    def test_discount_cannot_exceed_subtotal(self):
        sale = _sale()
        sale.add_item(_item(quantity=1, unit_price_cents=500))
        with pytest.raises(ValidationError):
            sale.apply_discount(501)
        assert sale.discount_cents == 0

    def test_negative_discount_rejected(self):
        sale = _sale()
        sale.add_item(_item())
        with pytest.raises(ValidationError):
            sale.apply_discount(-1)

    def test_negative_tax_rejected(self):
        sale = _sale()
        sale.add_item(_item())
        with pytest.raises(ValidationError):
            sale.apply_tax(-5)
        assert sale.tax_percent is None

    def test_discount_clamped_when_subtotal_drops(self):
        sale = _sale()
        sale.add_item(_item(product_id=1, quantity=1, unit_price_cents=1000))
        sale.add_item(_item(product_id=2, quantity=1, unit_price_cents=200))
        sale.apply_discount(1100)
        sale.remove_item(1)
        assert sale.discount_cents == 200
        assert sale.total_cents == 0


class TestSalePayment:
    def test_payment_computes_change(self):
        sale = _sale()
        sale.add_item(_item(quantity=2, unit_price_cents=5000))
        sale.apply_discount(1000)
        sale.apply_tax(10)
        sale.process_payment(10000, "cash")

        assert sale.paid_cents == 10000
        assert sale.change_cents == 100
        assert sale.payment_processed

    def test_underpayment_rejected(self):
        sale = _sale()
        sale.add_item(_item(quantity=1, unit_price_cents=5000))
        with pytest.raises(ValidationError):
            sale.process_payment(4999, "card")
        assert not sale.payment_processed
        assert sale.paid_cents == 0

    def test_unknown_payment_method(self):
        sale = _sale()
        sale.add_item(_item())
        with pytest.raises(ValidationError):
            sale.process_payment(5000, "barter")


class TestSaleTransitions:
    def _paid_sale(self):
        sale = _sale()
        sale.add_item(_item(quantity=1, unit_price_cents=5000))
        sale.process_payment(5000, "card")
        return sale

    def test_complete(self):
        sale = self._paid_sale()
        sale.complete()
        assert sale.is_completed
        assert sale.completed_at is not None

    def test_complete_requires_items(self):
        sale = _sale()
        with pytest.raises(ValidationError):
            sale.complete()
        assert sale.is_pending

    def test_complete_requires_payment(self):
        sale = _sale()
        sale.add_item(_item())
        with pytest.raises(ValidationError):
            sale.complete()
        assert sale.is_pending

    def test_completed_sale_is_frozen(self):
        sale = self._paid_sale()
        sale.complete()

        with pytest.raises(InvalidStateError):
            sale.add_item(_item(product_id=2))
        with pytest.raises(InvalidStateError):
            sale.update_item_quantity(1, 2)
        with pytest.raises(InvalidStateError):
            sale.remove_item(1)
        with pytest.raises(InvalidStateError):
            sale.apply_discount(10)
        with pytest.raises(InvalidStateError):
            sale.complete()
        assert sale.total_cents == 5000

    def test_completed_sale_cannot_be_cancelled(self):
        sale = self._paid_sale()
        sale.complete()
        with pytest.raises(InvalidStateError):
            sale.cancel()
        assert sale.is_completed

    def test_cancel_pending(self):
        sale = _sale()
        sale.add_item(_item())
        sale.cancel()
        assert sale.is_cancelled
        assert sale.cancelled_at is not None

    def test_cancelled_sale_is_terminal(self):
        sale = _sale()
        sale.cancel()
        with pytest.raises(InvalidStateError):
            sale.cancel()
        with pytest.raises(InvalidStateError):
            sale.add_item(_item())
        with pytest.raises(InvalidStateError):
            sale.complete()

    def test_to_dict_includes_items(self):
        sale = self._paid_sale()
        data = sale.to_dict()
        assert data["sale_number"] == "S-001-0001"
        assert data["items"][0]["product_sku"] == "SKU-1"
        assert "items" not in sale.to_dict(include_items=False)
