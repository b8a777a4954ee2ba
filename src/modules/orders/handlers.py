"""Event handlers for Orders domain events.

Handlers enqueue notification emails.  Enqueueing is best-effort: the
order mutation has already committed, so a broker outage is logged and
never propagated.
"""

from __future__ import annotations

import structlog

from modules.notifications.tasks import (
    send_order_confirmation_email,
    send_payment_failure_email,
)
from modules.orders.events import OrderCancelled, OrderPaid, OrderPaymentFailed
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class OrderPaidHandler(IEventHandler[OrderPaid]):
    def handle(self, event: OrderPaid) -> None:
        order_id = str(event.aggregate_id)
        try:
            send_order_confirmation_email.delay(order_id)
        except Exception:
            logger.warning(
                "order.confirmation_email_enqueue_failed",
                order_id=order_id,
                exc_info=True,
            )
        else:
            logger.info("order.confirmation_email_enqueued", order_id=order_id)


class OrderPaymentFailedHandler(IEventHandler[OrderPaymentFailed]):
    def handle(self, event: OrderPaymentFailed) -> None:
        order_id = str(event.aggregate_id)
        try:
            send_payment_failure_email.delay(order_id, event.reason)
        except Exception:
            logger.warning(
                "order.failure_email_enqueue_failed",
                order_id=order_id,
                exc_info=True,
            )
        else:
            logger.info("order.failure_email_enqueued", order_id=order_id)


class OrderCancelledHandler(IEventHandler[OrderCancelled]):
    def handle(self, event: OrderCancelled) -> None:
        logger.info("order.cancelled_event_handled", order_id=str(event.aggregate_id))


order_paid_handler = OrderPaidHandler()
order_payment_failed_handler = OrderPaymentFailedHandler()
order_cancelled_handler = OrderCancelledHandler()
