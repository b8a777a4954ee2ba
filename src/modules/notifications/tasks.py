"""Notification emails sent from the Celery worker.

Tasks take ids, not model instances, and reload the order: by the time a
worker picks a task up the order may have moved on.
"""

from smtplib import SMTPException

import structlog
from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

from modules.orders.models import Order

logger = structlog.get_logger(__name__)

_RETRY_OPTIONS = {
    "autoretry_for": (SMTPException, ConnectionError),
    "retry_backoff": True,
    "max_retries": 3,
}


def _load_order(order_id: str):
    order = (
        Order.objects.select_related("customer")
        .prefetch_related("products")
        .filter(id=order_id)
        .first()
    )
    if order is None:
        logger.warning("notification.order_missing", order_id=order_id)
    return order


@shared_task(name="notifications.send_order_confirmation_email", **_RETRY_OPTIONS)
def send_order_confirmation_email(order_id: str) -> bool:
    order = _load_order(order_id)
    if order is None:
        return False

    customer = order.customer
    products = "\n".join(f"- {product.name}" for product in order.products.all())
    send_mail(
        subject=f"Order confirmation #{order.order_number}",
        message=(
            f"Hi {customer.first_name},\n\n"
            f"Thank you for your purchase. Order #{order.order_number} is paid.\n\n"
            f"{products}\n\n"
            f"Total: {order.order_total} {settings.PAYMENT_CURRENCY}\n"
            f"Your downloads: {settings.FRONTEND_URL}/orders/{order.id}\n"
        ),
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[customer.email],
    )
    logger.info("notification.order_confirmation_sent", order_id=order_id)
    return True


@shared_task(name="notifications.send_payment_failure_email", **_RETRY_OPTIONS)
def send_payment_failure_email(order_id: str, reason: str = "") -> bool:
    order = _load_order(order_id)
    if order is None:
        return False

    customer = order.customer
    detail = f": {reason}" if reason else "."
    send_mail(
        subject=f"Payment failed for order #{order.order_number}",
        message=(
            f"Hi {customer.first_name},\n\n"
            f"We could not process the payment for order #{order.order_number}"
            f"{detail}\n\n"
            f"You can retry the payment within "
            f"{settings.RETRY_PAYMENT_MAX_AGE_HOURS} hours of placing the order: "
            f"{settings.FRONTEND_URL}/checkout/{order.id}\n"
        ),
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[customer.email],
    )
    logger.info("notification.payment_failure_sent", order_id=order_id)
    return True
