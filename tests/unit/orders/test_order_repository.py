"""Unit tests for OrderDjangoRepository."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from modules.core.models import Sequence
from modules.orders.constants import ORDER_NUMBER_SEQUENCE, OrderStatus, OrderTotalCode
from modules.orders.dtos import CheckoutLineDTO, CheckoutOptionDTO, RequestProvenanceDTO
from modules.orders.models import Order, OrderProductOption

pytestmark = pytest.mark.unit


def _lines(product):
    return [
        CheckoutLineDTO(
            product_id=product.id,
            product_name=product.name,
            options=[
                CheckoutOptionDTO(option_id=o.id, name=o.name, price=o.price)
                for o in product.options.all()
            ],
        )
    ]


def _totals(order):
    return list(order.totals.values_list("code", "value"))


class TestCreate:
    def test_creates_pending_order_with_lines_and_totals(
        self, order_repository, customer, product
    ):
        order = order_repository.create(
            customer.id, _lines(product), RequestProvenanceDTO(source="mobile")
        )

        assert order.order_status == OrderStatus.PENDING
        assert order.order_total == Decimal("200.00")
        assert order.source == "mobile"
        assert order.products.count() == 1
        assert OrderProductOption.objects.filter(order_product__order=order).count() == 2
        assert _totals(order) == [
            (OrderTotalCode.SUBTOTAL, Decimal("200.00")),
            (OrderTotalCode.TOTAL, Decimal("200.00")),
        ]

    def test_order_numbers_are_sequential(self, order_repository, customer, product):
        first = order_repository.create(customer.id, _lines(product), RequestProvenanceDTO())
        second = order_repository.create(customer.id, _lines(product), RequestProvenanceDTO())

        assert int(second.order_number) == int(first.order_number) + 1

    def test_order_number_collision_is_retried(self, order_repository, customer, product):
        first = order_repository.create(customer.id, _lines(product), RequestProvenanceDTO())
        # Rewind the counter so the next value collides with an existing order.
        Sequence.objects.filter(name=ORDER_NUMBER_SEQUENCE).update(
            value=int(first.order_number) - 1
        )

        second = order_repository.create(customer.id, _lines(product), RequestProvenanceDTO())

        assert second.order_number != first.order_number
        assert Order.objects.count() == 2

    def test_snapshots_option_prices(self, order_repository, customer, product):
        order = order_repository.create(customer.id, _lines(product), RequestProvenanceDTO())
        product.options.update(price=Decimal("999.00"))

        assert order.compute_subtotal() == Decimal("200.00")


class TestReads:
    def test_get_by_id_malformed_returns_none(self, order_repository):
        assert order_repository.get_by_id("not-a-uuid") is None
        assert order_repository.get_for_update("not-a-uuid") is None

    def test_get_by_gateway_order_id(self, order_repository, awaiting_payment):
        found = order_repository.get_for_update_by_gateway_order_id(
            awaiting_payment.gateway_order_id
        )
        assert found.id == awaiting_payment.id

    def test_get_by_empty_gateway_order_id_returns_none(
        self, order_repository, pending_order
    ):
        assert order_repository.get_for_update_by_gateway_order_id("") is None

    def test_list_for_customer_only_returns_own_orders(
        self, order_repository, pending_order, other_customer
    ):
        assert list(order_repository.list_for_customer(pending_order.customer_id)) == [
            pending_order
        ]
        assert not order_repository.list_for_customer(other_customer.id).exists()


class TestTotals:
    def test_replace_totals_with_discount(self, order_repository, pending_order):
        order_repository.replace_totals(pending_order, Decimal("200.00"), Decimal("20.00"))

        pending_order.refresh_from_db()
        assert pending_order.order_total == Decimal("180.00")
        assert _totals(pending_order) == [
            (OrderTotalCode.SUBTOTAL, Decimal("200.00")),
            (OrderTotalCode.COUPON_DISCOUNT, Decimal("20.00")),
            (OrderTotalCode.TOTAL, Decimal("180.00")),
        ]

    def test_total_never_negative(self, order_repository, pending_order):
        order_repository.replace_totals(pending_order, Decimal("200.00"), Decimal("250.00"))

        assert pending_order.order_total == Decimal("0.00")
        assert pending_order.get_total(OrderTotalCode.TOTAL) == Decimal("0.00")

    def test_replace_without_discount_drops_discount_row(
        self, order_repository, pending_order
    ):
        order_repository.replace_totals(pending_order, Decimal("200.00"), Decimal("20.00"))
        order_repository.replace_totals(pending_order, Decimal("200.00"), None)

        assert pending_order.get_total(OrderTotalCode.COUPON_DISCOUNT) is None
        assert pending_order.order_total == Decimal("200.00")


class TestQueries:
    def test_find_purchased_options_only_counts_paid_orders(
        self, order_repository, pending_order
    ):
        pairs = pending_order.option_pairs()
        assert order_repository.find_purchased_options(pending_order.customer_id, pairs) == set()

        pending_order.order_status = OrderStatus.PAID
        pending_order.save(update_fields=["order_status"])

        assert (
            order_repository.find_purchased_options(pending_order.customer_id, pairs)
            == pairs
        )

    def test_find_purchased_options_empty_pairs(self, order_repository, customer):
        assert order_repository.find_purchased_options(customer.id, set()) == set()

    def test_has_history_since(self, order_repository, pending_order):
        order_repository.add_history(
            pending_order, OrderStatus.PENDING, "Payment retry attempted by customer"
        )
        now = timezone.now()

        assert order_repository.has_history_since(
            pending_order, "Payment retry attempted", now - timedelta(minutes=5)
        )
        assert not order_repository.has_history_since(
            pending_order, "Payment retry attempted", now + timedelta(minutes=1)
        )

    def test_record_payment_event_is_idempotent(self, order_repository, pending_order):
        assert order_repository.record_payment_event(
            pending_order, "pay_1", OrderStatus.PAID, "payment.captured"
        )
        assert not order_repository.record_payment_event(
            pending_order, "pay_1", OrderStatus.PAID, "order.paid"
        )
        assert order_repository.has_payment_event(pending_order, "pay_1", OrderStatus.PAID)
        assert not order_repository.has_payment_event(
            pending_order, "pay_1", OrderStatus.FAILED
        )
