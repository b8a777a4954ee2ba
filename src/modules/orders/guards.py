"""Order look-ups shared by the customer-facing services."""

from __future__ import annotations

from typing import TYPE_CHECKING

from modules.orders.exceptions import NotOrderOwner, OrderNotFound

if TYPE_CHECKING:
    from modules.customers.models import Customer
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository


def get_owned_order(
    order_repository: IOrderRepository,
    order_id,
    customer: Customer,
    for_update: bool = False,
) -> Order:
    """Load an order and check it belongs to *customer*.

    Raises:
        OrderNotFound: no order with that id (or a malformed id).
        NotOrderOwner: the order belongs to someone else.
    """
    if for_update:
        order = order_repository.get_for_update(str(order_id))
    else:
        order = order_repository.get_by_id(str(order_id))
    if order is None:
        raise OrderNotFound()
    if not order.is_owned_by(customer):
        raise NotOrderOwner()
    return order
