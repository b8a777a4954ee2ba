"""Wallet repositories package."""

from modules.wallet.repositories.django_repository import WalletDjangoRepository
from modules.wallet.repositories.interfaces import IWalletRepository

__all__ = ["IWalletRepository", "WalletDjangoRepository"]
