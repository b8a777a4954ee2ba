"""Unit tests for gateway webhook parsing and reconciliation.

Covers:
- parse: signature, JSON and envelope validation.
- parse_order_reference precedence.
- reconcile: transitions per event type, replay idempotency, unknown
  orders, invalid states, amount mismatches, coupon and cart effects.
"""

from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.core import mail

from modules.cart.models import CartItem
from modules.cart.services import CartService
from modules.coupons.models import CouponUsage
from modules.orders.constants import OrderStatus, OrderTotalCode
from modules.orders.models import OrderHistory, ProcessedPaymentEvent
from modules.payments.exceptions import InvalidWebhook
from modules.payments.webhooks import (
    WebhookReconciler,
    parse_order_reference,
)

pytestmark = pytest.mark.unit

SECRET = "whsec_test"


@pytest.fixture()
def reconciler(order_repository, coupon_service, gateway):
    return WebhookReconciler(
        order_repository=order_repository,
        coupon_service=coupon_service,
        cart_service=CartService(),
        payment_gateway=gateway,
        webhook_secret=SECRET,
    )


@pytest.fixture()
def deliver(reconciler, signed_webhook):
    """Sign, parse and reconcile one delivery."""

    def _deliver(event, payment=None, order=None, webhook_id="evt_1"):
        body, signature = signed_webhook(event, payment=payment, order=order)
        return reconciler.reconcile(reconciler.parse(body, signature, webhook_id))

    return _deliver


def _captured(order, payment_id="pay_1", amount_paise=20000):
    return {
        "id": payment_id,
        "amount": amount_paise,
        "status": "captured",
        "order_id": order.gateway_order_id,
        "notes": {"orderId": str(order.id)},
    }


def _paid_entries(order):
    return OrderHistory.objects.filter(order=order, order_status=OrderStatus.PAID)


# ---------------------------------------------------------------------------
# parse
# ---------------------------------------------------------------------------


class TestParse:
    def test_valid_delivery(self, reconciler, signed_webhook):
        body, signature = signed_webhook("payment.captured", payment={"id": "pay_1"})

        event = reconciler.parse(body, signature, "evt_1")

        assert event.event == "payment.captured"
        assert event.payment_id == "pay_1"
        assert event.webhook_id == "evt_1"

    def test_missing_secret(self, reconciler, signed_webhook):
        reconciler._secret = ""
        body, signature = signed_webhook("payment.captured", payment={})

        with pytest.raises(InvalidWebhook, match="secret not configured"):
            reconciler.parse(body, signature, "evt_1")

    def test_missing_signature(self, reconciler, signed_webhook):
        body, _ = signed_webhook("payment.captured", payment={})

        with pytest.raises(InvalidWebhook, match="Missing webhook signature"):
            reconciler.parse(body, None, "evt_1")

    def test_signature_with_wrong_secret(self, reconciler, signed_webhook):
        body, signature = signed_webhook("payment.captured", payment={}, secret="other")

        with pytest.raises(InvalidWebhook, match="Invalid webhook signature"):
            reconciler.parse(body, signature, "evt_1")

    def test_tampered_body(self, reconciler, signed_webhook):
        body, signature = signed_webhook("payment.captured", payment={"amount": 100})

        with pytest.raises(InvalidWebhook, match="Invalid webhook signature"):
            reconciler.parse(body.replace(b"100", b"999"), signature, "evt_1")

    def test_invalid_json(self, reconciler, sign):
        body = b"{not json"
        with pytest.raises(InvalidWebhook, match="Invalid JSON"):
            reconciler.parse(body, sign(body), "evt_1")

    def test_missing_payload(self, reconciler, sign):
        body = json.dumps({"event": "payment.captured"}).encode()
        with pytest.raises(InvalidWebhook, match="Missing event or payload"):
            reconciler.parse(body, sign(body), "evt_1")

    def test_empty_entities_become_dicts(self, reconciler, sign):
        body = json.dumps(
            {"event": "payment.captured", "payload": {"payment": {"entity": []}}}
        ).encode()

        event = reconciler.parse(body, sign(body), "evt_1")

        assert event.payment == {}
        assert event.order == {}


# ---------------------------------------------------------------------------
# Order reference extraction
# ---------------------------------------------------------------------------


class TestOrderReference:
    def test_notes_order_id_wins(self):
        ref = parse_order_reference(
            {
                "order_id": "order_1",
                "notes": {"orderId": "internal-1", "order_id": "internal-2"},
                "metadata": {"orderId": "internal-3"},
            },
            "payment",
        )
        assert (ref.value, ref.source) == ("internal-1", "notes.orderId")
        assert not ref.is_gateway_order_id

    def test_gateway_order_id_before_snake_case_note(self):
        ref = parse_order_reference(
            {"order_id": "order_1", "notes": {"order_id": "internal-2"}}, "payment"
        )
        assert (ref.value, ref.source) == ("order_1", "entity.order_id")
        assert ref.is_gateway_order_id

    def test_order_entity_uses_its_id(self):
        ref = parse_order_reference({"id": "order_9", "notes": []}, "order")
        assert (ref.value, ref.source) == ("order_9", "entity.id")

    def test_snake_case_note_then_metadata(self):
        ref = parse_order_reference({"notes": {"order_id": "internal-2"}}, "payment")
        assert ref.source == "notes.order_id"

        ref = parse_order_reference({"metadata": {"orderId": "internal-3"}}, "payment")
        assert ref.source == "metadata.orderId"

    def test_no_reference(self):
        assert parse_order_reference({"id": "pay_1"}, "payment") is None


# ---------------------------------------------------------------------------
# reconcile
# ---------------------------------------------------------------------------


class TestReconcile:
    def test_payment_captured_marks_order_paid(self, deliver, awaiting_payment, customer):
        result = deliver("payment.captured", payment=_captured(awaiting_payment))

        awaiting_payment.refresh_from_db()
        assert result.processed is True
        assert result.message == "Order marked as paid"
        assert awaiting_payment.order_status == OrderStatus.PAID
        assert not CartItem.objects.filter(cart__customer=customer).exists()
        comment = _paid_entries(awaiting_payment).get().comment
        assert "Payment ID: pay_1" in comment
        assert "Gateway order ID: order_0001" in comment

    def test_success_sends_no_email(
        self, deliver, awaiting_payment, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            deliver("payment.captured", payment=_captured(awaiting_payment))

        assert mail.outbox == []

    def test_replay_is_idempotent(
        self, deliver, awaiting_payment, coupon_service, customer, make_coupon
    ):
        make_coupon("SAVE10")
        coupon_service.apply(awaiting_payment.id, customer, "SAVE10")
        payment = _captured(awaiting_payment, amount_paise=18000)

        first = deliver("payment.captured", payment=payment)
        second = deliver("payment.captured", payment=payment, webhook_id="evt_2")

        assert first.processed is True
        assert second.processed is True
        assert second.idempotent is True
        assert _paid_entries(awaiting_payment).count() == 1
        assert CouponUsage.objects.filter(order=awaiting_payment).count() == 1
        assert ProcessedPaymentEvent.objects.filter(order=awaiting_payment).count() == 1

    def test_order_paid_after_payment_captured_is_rejected(self, deliver, awaiting_payment):
        deliver("payment.captured", payment=_captured(awaiting_payment))

        result = deliver(
            "order.paid",
            order={"id": awaiting_payment.gateway_order_id, "notes": {"orderId": str(awaiting_payment.id)}},
        )

        assert result.processed is False
        assert result.reason == "Order not in valid state: paid"
        assert result.current_status == OrderStatus.PAID
        assert _paid_entries(awaiting_payment).count() == 1

    def test_order_paid_event_by_gateway_order_id(self, deliver, awaiting_payment):
        result = deliver("order.paid", order={"id": awaiting_payment.gateway_order_id})

        awaiting_payment.refresh_from_db()
        assert result.processed is True
        assert result.order_id == str(awaiting_payment.id)
        assert awaiting_payment.order_status == OrderStatus.PAID

    def test_authorized_then_captured(self, deliver, awaiting_payment):
        authorized = _captured(awaiting_payment)
        authorized["status"] = "authorized"

        first = deliver("payment.authorized", payment=authorized)
        awaiting_payment.refresh_from_db()
        assert first.processed is True
        assert awaiting_payment.order_status == OrderStatus.AUTHORIZED

        deliver("payment.captured", payment=_captured(awaiting_payment))
        awaiting_payment.refresh_from_db()
        assert awaiting_payment.order_status == OrderStatus.PAID

    def test_unknown_order(self, deliver):
        result = deliver(
            "payment.captured",
            payment={
                "id": "pay_1",
                "amount": 100,
                "notes": {"orderId": "0190a000-0000-7000-8000-000000000000"},
            },
        )

        assert result.success is True
        assert result.processed is False
        assert result.reason == "Order not found"

    def test_invalid_internal_order_id(self, deliver):
        result = deliver(
            "payment.captured", payment={"id": "pay_1", "notes": {"orderId": "12345"}}
        )

        assert result.processed is False
        assert result.reason == "Invalid order ID format"

    def test_missing_order_reference(self, deliver):
        result = deliver("payment.captured", payment={"id": "pay_1"})

        assert result.processed is False
        assert result.reason == "Order ID not found in webhook payload"

    def test_unhandled_event(self, deliver):
        result = deliver("refund.created", payment={"id": "pay_1"})

        assert result.processed is False
        assert result.reason == "Unhandled event type: refund.created"

    def test_amount_mismatch(self, deliver, awaiting_payment):
        result = deliver(
            "payment.captured", payment=_captured(awaiting_payment, amount_paise=100)
        )

        awaiting_payment.refresh_from_db()
        assert result.processed is False
        assert result.reason == "Payment amount mismatch"
        assert awaiting_payment.order_status == OrderStatus.PENDING
        assert not ProcessedPaymentEvent.objects.exists()

    def test_payment_failed_reverses_coupon_and_emails(
        self,
        deliver,
        awaiting_payment,
        coupon_service,
        customer,
        make_coupon,
        django_capture_on_commit_callbacks,
    ):
        make_coupon("SAVE10")
        coupon_service.apply(awaiting_payment.id, customer, "SAVE10")
        payment = _captured(awaiting_payment)
        payment.update(status="failed", error_description="Card declined by bank")

        with django_capture_on_commit_callbacks(execute=True):
            result = deliver("payment.failed", payment=payment)

        awaiting_payment.refresh_from_db()
        assert result.processed is True
        assert awaiting_payment.order_status == OrderStatus.FAILED
        assert awaiting_payment.coupon_id is None
        assert awaiting_payment.order_total == Decimal("200.00")
        assert awaiting_payment.get_total(OrderTotalCode.COUPON_DISCOUNT) is None
        assert len(mail.outbox) == 1
        assert "Card declined by bank" in mail.outbox[0].body

    def test_failure_on_paid_order_is_rejected(self, deliver, awaiting_payment):
        deliver("payment.captured", payment=_captured(awaiting_payment))

        result = deliver("payment.failed", payment=_captured(awaiting_payment, "pay_2"))

        awaiting_payment.refresh_from_db()
        assert result.processed is False
        assert awaiting_payment.order_status == OrderStatus.PAID

    def test_internal_error_is_reported_not_raised(self, deliver, awaiting_payment):
        with patch(
            "modules.orders.state_machine.OrderStateMachine.transition",
            side_effect=RuntimeError("boom"),
        ):
            result = deliver("payment.captured", payment=_captured(awaiting_payment))

        awaiting_payment.refresh_from_db()
        assert result.success is False
        assert result.processed is False
        assert awaiting_payment.order_status == OrderStatus.PENDING
        assert not ProcessedPaymentEvent.objects.exists()


class TestResponseBody:
    def test_as_response_includes_optional_fields(self, deliver, awaiting_payment):
        deliver("payment.captured", payment=_captured(awaiting_payment))
        result = deliver("payment.captured", payment=_captured(awaiting_payment))

        body = result.as_response("evt_9", "payment.captured")

        assert body == {
            "success": True,
            "message": "Event already processed",
            "webhookId": "evt_9",
            "event": "payment.captured",
            "processed": True,
            "idempotent": True,
            "orderId": str(awaiting_payment.id),
        }
