"""Coupon domain exceptions."""

from __future__ import annotations

from modules.core.exceptions import Conflict, NotFound, ValidationFailed


class CouponNotFound(NotFound):
    code = "coupon_not_found"
    default_message = "Coupon not found or expired."


class CouponAlreadyApplied(Conflict):
    code = "coupon_already_applied"
    default_message = "A coupon has already been applied to this order."


class CouponNotApplicable(ValidationFailed):
    """The coupon exists but cannot discount this order."""

    code = "coupon_not_applicable"


class InvalidOrderSubtotal(ValidationFailed):
    code = "invalid_order_subtotal"
    default_message = "Order subtotal must be greater than zero."


class CouponCodeExists(Conflict):
    code = "coupon_code_exists"
    default_message = "A coupon with this code already exists."


class InvalidCoupon(ValidationFailed):
    """Coupon definition breaks a stored-data invariant."""

    code = "invalid_coupon"
