"""Wallet balance and top-up endpoints."""

from decimal import Decimal

import pytest

pytestmark = pytest.mark.integration


class TestWalletApi:
    def test_empty_wallet(self, auth_client):
        response = auth_client.get("/api/v1/wallet/")

        assert response.status_code == 200
        assert Decimal(response.json()["balance"]) == Decimal("0")
        assert response.json()["transactions"] == []

    def test_top_up_round_trip(self, auth_client, gateway):
        initiate = auth_client.post(
            "/api/v1/wallet/top-up/initiate/", {"amount": "150.00"}, format="json"
        )
        assert initiate.status_code == 200
        gateway_order_id = initiate.json()["gateway_order_id"]
        gateway.add_payment("pay_w1", "150.00", gateway_order_id)
        payload = {
            "razorpay_order_id": gateway_order_id,
            "razorpay_payment_id": "pay_w1",
            "razorpay_signature": "valid_signature",
            "amount": "150.00",
        }

        first = auth_client.post("/api/v1/wallet/top-up/verify/", payload, format="json")
        second = auth_client.post("/api/v1/wallet/top-up/verify/", payload, format="json")

        assert first.status_code == 200
        assert first.json()["already_processed"] is False
        assert second.json()["already_processed"] is True
        wallet = auth_client.get("/api/v1/wallet/").json()
        assert Decimal(wallet["balance"]) == Decimal("150.00")
        assert len(wallet["transactions"]) == 1

    def test_top_up_below_minimum(self, auth_client):
        response = auth_client.post(
            "/api/v1/wallet/top-up/initiate/", {"amount": "0.50"}, format="json"
        )

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_top_up_amount"

    def test_forged_signature(self, auth_client, gateway):
        gateway_order_id = auth_client.post(
            "/api/v1/wallet/top-up/initiate/", {"amount": "10.00"}, format="json"
        ).json()["gateway_order_id"]
        gateway.add_payment("pay_w1", "10.00", gateway_order_id)

        response = auth_client.post(
            "/api/v1/wallet/top-up/verify/",
            {
                "razorpay_order_id": gateway_order_id,
                "razorpay_payment_id": "pay_w1",
                "razorpay_signature": "forged",
                "amount": "10.00",
            },
            format="json",
        )

        assert response.status_code == 400
        assert Decimal(auth_client.get("/api/v1/wallet/").json()["balance"]) == 0
