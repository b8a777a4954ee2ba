"""Coupon URL configuration."""

from __future__ import annotations

from rest_framework.routers import DefaultRouter

from modules.coupons.views import CouponAdminViewSet, CouponViewSet

router = DefaultRouter(trailing_slash=True)
router.register("coupons", CouponViewSet, basename="coupon")
router.register("admin/coupons", CouponAdminViewSet, basename="admin-coupon")

urlpatterns = router.urls
