"""Wallet service layer: balance read and gateway-funded top-ups.

A top-up is a two-step flow.  ``initiate_top_up`` opens a gateway order;
the customer pays it in the gateway form and the client posts the signed
result to ``verify_top_up``, which credits the wallet exactly once per
gateway payment.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

import structlog
from django.conf import settings
from django.db import transaction

from modules.payments.exceptions import (
    InvalidPaymentSignature,
    PaymentAmountMismatch,
    PaymentNotCaptured,
)
from modules.wallet.dtos import (
    TopUpOrderDTO,
    TopUpResultDTO,
    WalletDTO,
    WalletTransactionDTO,
)
from modules.wallet.exceptions import (
    InvalidTopUpAmount,
    NotCustomerTopUp,
    TopUpOrderMismatch,
)

if TYPE_CHECKING:
    from modules.customers.models import Customer
    from modules.payments.gateway import IPaymentGateway
    from modules.wallet.repositories.interfaces import IWalletRepository

logger = structlog.get_logger(__name__)

RECENT_TRANSACTIONS_LIMIT = 20
TOP_UP_DESCRIPTION = "Added funds via Razorpay"
TOP_UP_PURPOSE = "wallet_top_up"


class WalletService:
    def __init__(
        self, wallet_repository: IWalletRepository, payment_gateway: IPaymentGateway
    ) -> None:
        self._wallet_repo = wallet_repository
        self._gateway = payment_gateway

    def get_wallet(self, customer: Customer) -> WalletDTO:
        wallet = self._wallet_repo.get_or_create_for_customer(
            customer.id, settings.PAYMENT_CURRENCY
        )
        transactions = self._wallet_repo.recent_transactions(
            wallet, RECENT_TRANSACTIONS_LIMIT
        )
        return WalletDTO(
            balance=wallet.balance,
            currency=wallet.currency,
            transactions=[WalletTransactionDTO.model_validate(t) for t in transactions],
        )

    def initiate_top_up(self, customer: Customer, amount: Decimal) -> TopUpOrderDTO:
        """Open a gateway order for a top-up of *amount*.

        Raises:
            InvalidTopUpAmount: below ``WALLET_MIN_TOP_UP``.
            GatewayError: the gateway order could not be created.
        """
        minimum = settings.WALLET_MIN_TOP_UP
        if amount is None or amount < minimum:
            raise InvalidTopUpAmount(f"Invalid amount. Minimum amount is {minimum}.")

        gateway_order = self._gateway.create_order(
            amount,
            settings.PAYMENT_CURRENCY,
            reference=f"wallet_{customer.id.hex}",
            notes={"customerId": str(customer.id), "purpose": TOP_UP_PURPOSE},
        )
        logger.info(
            "wallet.top_up_initiated",
            customer_id=str(customer.id),
            gateway_order_id=gateway_order.id,
            amount=str(amount),
        )
        return TopUpOrderDTO(
            gateway_order_id=gateway_order.id,
            amount=gateway_order.amount,
            currency=gateway_order.currency,
            key_id=self._gateway.key_id,
        )

    def verify_top_up(
        self,
        customer: Customer,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
        amount: Decimal,
    ) -> TopUpResultDTO:
        """Credit the wallet for a verified, captured gateway payment.

        The credited amount is the one the gateway captured; *amount* (what
        the client believes it paid) must match it.  Replays of the same
        payment return the current balance with ``already_processed=True``.

        Raises:
            InvalidPaymentSignature: the callback signature does not verify.
            PaymentNotCaptured: the gateway has not captured the payment.
            TopUpOrderMismatch: the payment belongs to another gateway order.
            NotCustomerTopUp: the gateway order is not this customer's top-up.
            PaymentAmountMismatch: captured amount differs from *amount*.
        """
        log = logger.bind(customer_id=str(customer.id), payment_id=payment_id)

        if not self._gateway.verify_payment_signature(
            gateway_order_id, payment_id, signature
        ):
            log.warning("wallet.invalid_signature")
            raise InvalidPaymentSignature()

        payment = self._gateway.fetch_payment(payment_id)
        if not payment.is_captured:
            log.warning("wallet.payment_not_captured", payment_status=payment.status)
            raise PaymentNotCaptured()
        if payment.order_id != gateway_order_id:
            log.warning("wallet.order_mismatch", gateway_order_id=gateway_order_id)
            raise TopUpOrderMismatch()

        gateway_order = self._gateway.fetch_order(gateway_order_id)
        if (
            gateway_order.notes.get("purpose") != TOP_UP_PURPOSE
            or gateway_order.notes.get("customerId") != str(customer.id)
        ):
            log.warning(
                "wallet.not_customer_top_up",
                gateway_order_id=gateway_order_id,
                purpose=gateway_order.notes.get("purpose"),
            )
            raise NotCustomerTopUp()
        if abs(payment.amount - amount) > settings.PAYMENT_AMOUNT_TOLERANCE:
            log.warning(
                "wallet.amount_mismatch", paid=str(payment.amount), claimed=str(amount)
            )
            raise PaymentAmountMismatch(
                "Payment amount does not match the top-up amount."
            )

        with transaction.atomic():
            wallet = self._wallet_repo.get_or_create_for_update(
                customer.id, settings.PAYMENT_CURRENCY
            )
            existing = self._wallet_repo.get_transaction_by_payment_id(payment_id)
            if existing is not None:
                log.info("wallet.top_up_already_processed")
                return TopUpResultDTO(
                    balance=wallet.balance,
                    transaction_id=existing.id,
                    already_processed=True,
                )

            entry = self._wallet_repo.credit(
                wallet,
                payment.amount,
                TOP_UP_DESCRIPTION,
                gateway_order_id=gateway_order_id,
                gateway_payment_id=payment_id,
            )
            if entry is None:
                return TopUpResultDTO(balance=wallet.balance, already_processed=True)

        log.info(
            "wallet.credited", amount=str(payment.amount), balance=str(wallet.balance)
        )
        return TopUpResultDTO(balance=wallet.balance, transaction_id=entry.id)
