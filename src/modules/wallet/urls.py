"""Wallet URL configuration."""

from __future__ import annotations

from rest_framework.routers import DefaultRouter

from modules.wallet.views import WalletViewSet

router = DefaultRouter(trailing_slash=True)
router.register("wallet", WalletViewSet, basename="wallet")

urlpatterns = router.urls
