"""Checkout and order-history URL configuration."""

from __future__ import annotations

from rest_framework.routers import DefaultRouter

from modules.orders.views import CheckoutViewSet, OrderViewSet

router = DefaultRouter(trailing_slash=True)
router.register("checkout", CheckoutViewSet, basename="checkout")
router.register("orders", OrderViewSet, basename="order")

urlpatterns = router.urls
