"""Order domain exceptions.

Raised by the Service Layer when business rules are violated.  The DRF
exception handler renders them using their ``status_code`` and ``code``.
"""

from __future__ import annotations

from modules.core.exceptions import (
    Conflict,
    NotFound,
    PermissionDenied,
    RateLimited,
    ValidationFailed,
)


class OrderNotFound(NotFound):
    code = "order_not_found"
    default_message = "Order not found."


class NotOrderOwner(PermissionDenied):
    """The order belongs to another customer."""

    code = "order_forbidden"
    default_message = "You do not have access to this order."


class InvalidOrderStatus(ValidationFailed):
    """The order is not in a status that allows the requested operation."""

    code = "invalid_order_status"


class EmptyCart(ValidationFailed):
    code = "empty_cart"
    default_message = "Your cart is empty."


class InvalidCartItem(ValidationFailed):
    """A cart item references a missing product or foreign/missing options."""

    code = "invalid_cart_item"


class DuplicatePurchase(Conflict):
    code = "already_purchased"
    default_message = (
        "You have already purchased some of these product options. "
        "Please remove them from your cart."
    )


class OrderNumberUnavailable(Conflict):
    code = "order_number_unavailable"
    default_message = "Could not allocate an order number. Please try again."


class OrderTooOldToRetry(ValidationFailed):
    code = "retry_window_expired"
    default_message = "Order is too old to retry payment. Please create a new order."


class RetryRateLimited(RateLimited):
    code = "retry_rate_limited"
    default_message = (
        "A payment retry was attempted recently. Please wait a few minutes."
    )
