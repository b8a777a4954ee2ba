"""End-to-end checkout flow through the HTTP API."""

from decimal import Decimal

import pytest

from modules.cart.models import CartItem
from modules.orders.constants import OrderStatus
from modules.orders.models import Order

pytestmark = pytest.mark.integration

BASE = "/api/v1/checkout"


@pytest.fixture()
def started(auth_client, cart):
    response = auth_client.post(f"{BASE}/start/", {}, format="json")
    assert response.status_code == 201
    return response.json()


class TestCheckoutFlow:
    def test_start_creates_pending_order(self, started):
        assert started["order_status"] == OrderStatus.PENDING
        assert Decimal(started["order_total"]) == Decimal("200.00")
        assert len(started["products"]) == 1
        assert {t["code"] for t in started["totals"]} == {"subtotal", "total"}

    def test_start_with_empty_cart(self, auth_client):
        response = auth_client.post(f"{BASE}/start/", {}, format="json")

        assert response.status_code == 400
        assert response.json()["code"] == "empty_cart"

    def test_create_payment_then_verify(self, auth_client, gateway, customer, started):
        response = auth_client.post(
            f"{BASE}/payment/create/", {"order_id": started["id"]}, format="json"
        )
        assert response.status_code == 200
        payment = response.json()
        assert payment["payment_required"] is True
        assert payment["gateway_order_id"] == "order_0001"
        assert payment["key_id"] == "rzp_test_key"
        assert payment["customer_email"] == customer.email

        gateway.add_payment("pay_1", "200.00", "order_0001")
        response = auth_client.post(
            f"{BASE}/payment/verify/",
            {
                "order_id": started["id"],
                "razorpay_order_id": "order_0001",
                "razorpay_payment_id": "pay_1",
                "razorpay_signature": "valid_signature",
            },
            format="json",
        )

        assert response.status_code == 200
        assert response.json()["order_status"] == OrderStatus.PAID
        assert response.json()["already_processed"] is False
        assert not CartItem.objects.filter(cart__customer=customer).exists()

        status_response = auth_client.get(f"{BASE}/{started['id']}/status/")
        assert status_response.json()["order_status"] == OrderStatus.PAID

    def test_verify_with_forged_signature(self, auth_client, gateway, started):
        auth_client.post(f"{BASE}/payment/create/", {"order_id": started["id"]}, format="json")
        gateway.add_payment("pay_1", "200.00", "order_0001")

        response = auth_client.post(
            f"{BASE}/payment/verify/",
            {
                "order_id": started["id"],
                "razorpay_order_id": "order_0001",
                "razorpay_payment_id": "pay_1",
                "razorpay_signature": "forged",
            },
            format="json",
        )

        assert response.status_code == 400
        assert Order.objects.get(pk=started["id"]).order_status == OrderStatus.PENDING

    def test_gateway_outage_is_500(self, auth_client, gateway, started):
        gateway.fail_create = True

        response = auth_client.post(
            f"{BASE}/payment/create/", {"order_id": started["id"]}, format="json"
        )

        assert response.status_code == 500
        assert set(response.json()) == {"message", "code"}

    def test_cancel(self, auth_client, started):
        response = auth_client.post(f"{BASE}/{started['id']}/cancel/")

        assert response.status_code == 200
        assert response.json()["order_status"] == OrderStatus.CANCELLED

        again = auth_client.post(f"{BASE}/{started['id']}/cancel/")
        assert again.status_code == 400
        assert again.json()["code"] == "invalid_order_status"

    def test_payment_failed_then_retry(self, auth_client, started):
        response = auth_client.put(
            f"{BASE}/payment-failed/",
            {"order_id": started["id"], "reason": "Card declined"},
            format="json",
        )
        assert response.status_code == 200
        assert response.json()["order_status"] == OrderStatus.FAILED
        assert response.json()["history"][-1]["comment"] == "Payment failed: Card declined"

        retry = auth_client.post(
            f"{BASE}/retry-payment/", {"order_id": started["id"]}, format="json"
        )
        assert retry.status_code == 200
        assert retry.json()["order_status"] == OrderStatus.PENDING
        assert retry.json()["gateway_order_id"] == "order_0001"

    def test_second_retry_within_cooldown_is_429(self, auth_client, started):
        auth_client.put(
            f"{BASE}/payment-failed/", {"order_id": started["id"]}, format="json"
        )
        auth_client.post(f"{BASE}/retry-payment/", {"order_id": started["id"]}, format="json")
        auth_client.put(
            f"{BASE}/payment-failed/", {"order_id": started["id"]}, format="json"
        )

        response = auth_client.post(
            f"{BASE}/retry-payment/", {"order_id": started["id"]}, format="json"
        )

        assert response.status_code == 429
        assert response.json()["code"] == "retry_rate_limited"


class TestOwnership:
    def test_other_customer_cannot_see_status(self, api_client, other_customer, started):
        api_client.force_authenticate(user=other_customer.user)

        response = api_client.get(f"{BASE}/{started['id']}/status/")

        assert response.status_code == 403
        assert response.json()["code"] == "order_forbidden"

    def test_unauthenticated(self, api_client):
        response = api_client.post(f"{BASE}/start/", {}, format="json")

        assert response.status_code == 401
