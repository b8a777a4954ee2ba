"""Wallet repository interface."""

from __future__ import annotations

from abc import abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.wallet.models import Wallet, WalletTransaction


class IWalletRepository(IRepository["Wallet"]):
    @abstractmethod
    def get_or_create_for_customer(self, customer_id: UUID, currency: str) -> Wallet:
        """The customer's wallet, created empty on first access."""

    @abstractmethod
    def get_or_create_for_update(self, customer_id: UUID, currency: str) -> Wallet:
        """Like ``get_or_create_for_customer`` but holding the row lock."""

    @abstractmethod
    def recent_transactions(self, wallet: Wallet, limit: int) -> List[WalletTransaction]:
        """Newest transactions first."""

    @abstractmethod
    def get_transaction_by_payment_id(
        self, gateway_payment_id: str
    ) -> Optional[WalletTransaction]:
        """The transaction already recorded for a gateway payment."""

    @abstractmethod
    def credit(
        self,
        wallet: Wallet,
        amount: Decimal,
        description: str,
        gateway_order_id: str = "",
        gateway_payment_id: Optional[str] = None,
    ) -> Optional[WalletTransaction]:
        """Record a completed credit and raise the balance.

        Returns ``None`` when the gateway payment was already recorded.
        """
