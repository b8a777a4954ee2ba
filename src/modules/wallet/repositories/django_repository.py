"""Django ORM implementation of the Wallet repository.

The credit inserts the transaction before touching the balance so that a
duplicate ``gateway_payment_id`` aborts the savepoint with the balance
unchanged.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from modules.wallet.models import (
    TransactionStatus,
    TransactionType,
    Wallet,
    WalletTransaction,
)
from modules.wallet.repositories.interfaces import IWalletRepository

logger = structlog.get_logger(__name__)


class WalletDjangoRepository(IWalletRepository):
    def get_by_id(self, id: str) -> Optional[Wallet]:
        try:
            return Wallet.objects.filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def get_for_update(self, id: str) -> Optional[Wallet]:
        try:
            return Wallet.objects.select_for_update().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def save(self, entity: Wallet) -> Wallet:
        entity.save()
        return entity

    def get_or_create_for_customer(self, customer_id: UUID, currency: str) -> Wallet:
        wallet, created = Wallet.objects.get_or_create(
            customer_id=customer_id, defaults={"currency": currency}
        )
        if created:
            logger.info("wallet.created", customer_id=str(customer_id))
        return wallet

    def get_or_create_for_update(self, customer_id: UUID, currency: str) -> Wallet:
        wallet = self.get_or_create_for_customer(customer_id, currency)
        return Wallet.objects.select_for_update().get(pk=wallet.pk)

    def recent_transactions(self, wallet: Wallet, limit: int) -> List[WalletTransaction]:
        return list(wallet.transactions.order_by("-created_at", "-id")[:limit])

    def get_transaction_by_payment_id(
        self, gateway_payment_id: str
    ) -> Optional[WalletTransaction]:
        return WalletTransaction.objects.filter(
            gateway_payment_id=gateway_payment_id
        ).first()

    def credit(
        self,
        wallet: Wallet,
        amount: Decimal,
        description: str,
        gateway_order_id: str = "",
        gateway_payment_id: Optional[str] = None,
    ) -> Optional[WalletTransaction]:
        try:
            with transaction.atomic():
                entry = WalletTransaction.objects.create(
                    wallet=wallet,
                    customer_id=wallet.customer_id,
                    amount=amount,
                    type=TransactionType.CREDIT,
                    status=TransactionStatus.COMPLETED,
                    description=description,
                    gateway_order_id=gateway_order_id,
                    gateway_payment_id=gateway_payment_id,
                )
                Wallet.objects.filter(pk=wallet.pk).update(
                    balance=F("balance") + amount, updated_at=timezone.now()
                )
        except IntegrityError:
            logger.info(
                "wallet.credit_duplicate",
                wallet_id=str(wallet.id),
                gateway_payment_id=gateway_payment_id,
            )
            return None

        wallet.refresh_from_db(fields=["balance", "updated_at"])
        return entry
