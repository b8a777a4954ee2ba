"""Unit tests for WalletService top-ups."""

from __future__ import annotations

from decimal import Decimal

import pytest
from django.db import transaction

from modules.payments.exceptions import (
    InvalidPaymentSignature,
    PaymentAmountMismatch,
    PaymentNotCaptured,
)
from modules.wallet.exceptions import (
    InvalidTopUpAmount,
    NotCustomerTopUp,
    TopUpOrderMismatch,
)
from modules.wallet.models import TransactionType, Wallet, WalletTransaction
from modules.wallet.repositories.django_repository import WalletDjangoRepository
from modules.wallet.services import WalletService

pytestmark = pytest.mark.unit

VALID_SIGNATURE = "valid_signature"


@pytest.fixture()
def wallet_service(gateway):
    return WalletService(WalletDjangoRepository(), gateway)


@pytest.fixture()
def top_up(wallet_service, gateway, customer):
    """Initiated top-up of 100.00 whose payment the gateway has captured."""
    order = wallet_service.initiate_top_up(customer, Decimal("100.00"))
    gateway.add_payment("pay_w1", "100.00", order.gateway_order_id)
    return order


class TestGetWallet:
    def test_creates_empty_wallet(self, wallet_service, customer):
        wallet = wallet_service.get_wallet(customer)

        assert wallet.balance == Decimal("0.00")
        assert wallet.currency == "INR"
        assert wallet.transactions == []
        assert Wallet.objects.filter(customer=customer).count() == 1


class TestInitiateTopUp:
    def test_opens_gateway_order(self, wallet_service, gateway, customer):
        result = wallet_service.initiate_top_up(customer, Decimal("250.00"))

        assert result.gateway_order_id == "order_0001"
        assert result.amount == Decimal("250.00")
        assert result.key_id == gateway.key_id
        assert gateway.orders[0].receipt == f"wallet_{customer.id.hex}"

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("0.99"), Decimal("-5")])
    def test_rejects_amount_below_minimum(self, wallet_service, customer, amount):
        with pytest.raises(InvalidTopUpAmount, match="Minimum amount is 1"):
            wallet_service.initiate_top_up(customer, amount)


class TestVerifyTopUp:
    def test_credits_wallet_once(self, wallet_service, customer, top_up):
        result = wallet_service.verify_top_up(
            customer, top_up.gateway_order_id, "pay_w1", VALID_SIGNATURE, Decimal("100.00")
        )

        assert result.balance == Decimal("100.00")
        assert result.already_processed is False
        entry = WalletTransaction.objects.get(gateway_payment_id="pay_w1")
        assert entry.type == TransactionType.CREDIT
        assert entry.amount == Decimal("100.00")
        assert entry.description == "Added funds via Razorpay"

    def test_replay_returns_already_processed(self, wallet_service, customer, top_up):
        first = wallet_service.verify_top_up(
            customer, top_up.gateway_order_id, "pay_w1", VALID_SIGNATURE, Decimal("100.00")
        )
        second = wallet_service.verify_top_up(
            customer, top_up.gateway_order_id, "pay_w1", VALID_SIGNATURE, Decimal("100.00")
        )

        assert second.already_processed is True
        assert second.transaction_id == first.transaction_id
        assert second.balance == Decimal("100.00")
        assert WalletTransaction.objects.count() == 1
        assert wallet_service.get_wallet(customer).balance == Decimal("100.00")

    def test_invalid_signature(self, wallet_service, customer, top_up):
        with pytest.raises(InvalidPaymentSignature):
            wallet_service.verify_top_up(
                customer, top_up.gateway_order_id, "pay_w1", "forged", Decimal("100.00")
            )

    def test_payment_not_captured(self, wallet_service, gateway, customer, top_up):
        gateway.add_payment("pay_w1", "100.00", top_up.gateway_order_id, status="failed")

        with pytest.raises(PaymentNotCaptured):
            wallet_service.verify_top_up(
                customer, top_up.gateway_order_id, "pay_w1", VALID_SIGNATURE, Decimal("100.00")
            )

    def test_payment_of_another_order(self, wallet_service, gateway, customer, top_up):
        gateway.add_payment("pay_w1", "100.00", "order_elsewhere")

        with pytest.raises(TopUpOrderMismatch):
            wallet_service.verify_top_up(
                customer, top_up.gateway_order_id, "pay_w1", VALID_SIGNATURE, Decimal("100.00")
            )

    def test_checkout_payment_cannot_fund_wallet(
        self, wallet_service, gateway, customer, awaiting_payment
    ):
        gateway.add_payment("pay_x", "200.00", awaiting_payment.gateway_order_id)

        with pytest.raises(NotCustomerTopUp):
            wallet_service.verify_top_up(
                customer,
                awaiting_payment.gateway_order_id,
                "pay_x",
                VALID_SIGNATURE,
                Decimal("200.00"),
            )

        assert not WalletTransaction.objects.exists()

    def test_other_customers_top_up(
        self, wallet_service, other_customer, top_up
    ):
        with pytest.raises(NotCustomerTopUp):
            wallet_service.verify_top_up(
                other_customer,
                top_up.gateway_order_id,
                "pay_w1",
                VALID_SIGNATURE,
                Decimal("100.00"),
            )

        assert wallet_service.get_wallet(other_customer).balance == Decimal("0.00")

    def test_claimed_amount_mismatch(self, wallet_service, customer, top_up):
        with pytest.raises(PaymentAmountMismatch):
            wallet_service.verify_top_up(
                customer, top_up.gateway_order_id, "pay_w1", VALID_SIGNATURE, Decimal("500.00")
            )

        assert not WalletTransaction.objects.exists()

    def test_transactions_listed_newest_first(self, wallet_service, gateway, customer, top_up):
        wallet_service.verify_top_up(
            customer, top_up.gateway_order_id, "pay_w1", VALID_SIGNATURE, Decimal("100.00")
        )
        second = wallet_service.initiate_top_up(customer, Decimal("50.00"))
        gateway.add_payment("pay_w2", "50.00", second.gateway_order_id)
        wallet_service.verify_top_up(
            customer, second.gateway_order_id, "pay_w2", VALID_SIGNATURE, Decimal("50.00")
        )

        wallet = wallet_service.get_wallet(customer)

        assert wallet.balance == Decimal("150.00")
        assert [t.gateway_payment_id for t in wallet.transactions] == ["pay_w2", "pay_w1"]


class TestLedgerRows:
    def test_transactions_are_immutable(self, wallet_service, customer, top_up):
        wallet_service.verify_top_up(
            customer, top_up.gateway_order_id, "pay_w1", VALID_SIGNATURE, Decimal("100.00")
        )
        entry = WalletTransaction.objects.get()
        entry.amount = Decimal("1.00")

        with pytest.raises(ValueError), transaction.atomic():
            entry.save()

    def test_duplicate_credit_leaves_balance_unchanged(self, customer):
        repo = WalletDjangoRepository()
        wallet = repo.get_or_create_for_customer(customer.id, "INR")

        assert repo.credit(wallet, Decimal("10.00"), "x", gateway_payment_id="pay_dup")
        assert repo.credit(wallet, Decimal("10.00"), "x", gateway_payment_id="pay_dup") is None

        wallet.refresh_from_db()
        assert wallet.balance == Decimal("10.00")
