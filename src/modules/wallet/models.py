"""Wallet ledger models.

Business rules implemented:
- One wallet per customer; the balance never goes below zero (check
  constraint).
- ``WalletTransaction`` rows are immutable once written; balance changes
  happen on ``Wallet`` in the same transaction as the insert.
- ``gateway_payment_id`` is unique: a gateway payment credits a wallet at
  most once.
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.db.models import Q

from modules.core.models import BaseModel


class TransactionType(models.TextChoices):
    CREDIT = "CREDIT", "Credit"
    DEBIT = "DEBIT", "Debit"


class TransactionStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    COMPLETED = "COMPLETED", "Completed"
    FAILED = "FAILED", "Failed"


class Wallet(BaseModel):
    customer = models.OneToOneField(
        "customers.Customer",
        on_delete=models.PROTECT,
        related_name="wallet",
    )
    balance = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    currency = models.CharField(max_length=3, default="INR")
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "wallets"
        constraints = [
            models.CheckConstraint(
                condition=Q(balance__gte=0),
                name="wallets_balance_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"Wallet({self.customer_id}) {self.balance} {self.currency}"


class WalletTransaction(BaseModel):
    wallet = models.ForeignKey(
        "wallet.Wallet",
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    customer = models.ForeignKey(
        "customers.Customer",
        on_delete=models.PROTECT,
        related_name="wallet_transactions",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    type = models.CharField(max_length=6, choices=TransactionType.choices)
    status = models.CharField(
        max_length=10,
        choices=TransactionStatus.choices,
        default=TransactionStatus.COMPLETED,
    )
    description = models.CharField(max_length=255, blank=True, default="")
    gateway_order_id = models.CharField(max_length=64, blank=True, default="")
    gateway_payment_id = models.CharField(
        max_length=64, null=True, blank=True, unique=True
    )

    class Meta:
        db_table = "wallet_transactions"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["wallet", "-created_at"], name="wallet_txn_wallet_idx"),
        ]

    def save(self, *args, **kwargs) -> None:
        if not self._state.adding:
            raise ValueError("Wallet transactions are immutable.")
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.type} {self.amount} ({self.status})"
