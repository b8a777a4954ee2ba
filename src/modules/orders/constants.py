"""Order domain constants.

Status choices and the legal transitions of the order state machine,
plus the fixed history comments other parts of the system search for.
"""

from django.db import models


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    AUTHORIZED = "authorized", "Authorized"
    PAID = "paid", "Paid"
    CANCELLED = "cancelled", "Cancelled"
    REFUNDED = "refunded", "Refunded"
    FAILED = "failed", "Failed"


# failed -> pending is only ever taken by an explicit customer retry.
VALID_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.PENDING: {
        OrderStatus.AUTHORIZED,
        OrderStatus.PAID,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
    },
    OrderStatus.AUTHORIZED: {OrderStatus.PAID, OrderStatus.FAILED},
    OrderStatus.FAILED: {OrderStatus.PENDING},
    OrderStatus.PAID: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

TERMINAL_STATES: set[str] = {OrderStatus.CANCELLED, OrderStatus.REFUNDED}


class OrderTotalCode(models.TextChoices):
    SUBTOTAL = "subtotal", "Sub-Total"
    COUPON_DISCOUNT = "couponDiscount", "Coupon Discount"
    TOTAL = "total", "Total"


TOTAL_SORT_ORDER: dict[str, int] = {
    OrderTotalCode.SUBTOTAL: 1,
    OrderTotalCode.COUPON_DISCOUNT: 2,
    OrderTotalCode.TOTAL: 3,
}


class OrderSource(models.TextChoices):
    WEB = "web", "Web"
    MOBILE = "mobile", "Mobile"


class PaymentMethod(models.TextChoices):
    RAZORPAY = "razorpay", "Razorpay"
    COUPON = "coupon", "Coupon"
    FREE = "free", "Free"


ORDER_NUMBER_SEQUENCE = "order_number"
ORDER_NUMBER_MAX_ATTEMPTS = 2

CHECKOUT_INITIATED_COMMENT = "Checkout initiated from cart"
CHECKOUT_CANCELLED_COMMENT = "Checkout cancelled by customer"
DEFAULT_PAYMENT_FAILED_REASON = "Payment failed"
RETRY_ATTEMPT_MARKER = "Payment retry attempted"
RETRY_ATTEMPT_COMMENT = f"{RETRY_ATTEMPT_MARKER} by customer"
RETRY_FAILED_COMMENT = "Payment retry failed - gateway order creation error"
