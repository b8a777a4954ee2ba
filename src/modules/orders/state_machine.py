"""Order state machine.

The single place where ``order_status`` changes.  Each transition is
checked against ``VALID_TRANSITIONS`` and appends a history entry with
the new status, so the status/history invariant cannot drift.  Callers
hold the order row lock (``get_for_update``) inside their transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from modules.orders.exceptions import InvalidOrderStatus

if TYPE_CHECKING:
    from modules.orders.models import Order, OrderHistory
    from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)


class OrderStateMachine:
    def __init__(self, order_repository: IOrderRepository) -> None:
        self._order_repo = order_repository

    def transition(
        self, order: Order, new_status: str, comment: str, notify: bool = False
    ) -> OrderHistory:
        """Move *order* to *new_status* and record it in the history.

        Raises:
            InvalidOrderStatus: the transition is not allowed.
        """
        old_status = order.order_status
        log = logger.bind(
            order_id=str(order.id), old_status=old_status, new_status=new_status
        )
        if not order.can_transition_to(new_status):
            log.warning("order.invalid_transition")
            raise InvalidOrderStatus(
                f"Cannot change order status from {old_status} to {new_status}."
            )

        order.order_status = new_status
        order.save(update_fields=["order_status"])
        history = self._order_repo.add_history(order, new_status, comment, notify)
        log.info("order.status_changed")
        return history

    def note(self, order: Order, comment: str, notify: bool = False) -> OrderHistory:
        """Append an informational entry that keeps the current status."""
        return self._order_repo.add_history(
            order, order.order_status, comment, notify
        )
