"""Django ORM implementation of the Order repository.

Concurrency control on status changes uses ``select_for_update()``.  The
order number comes from an atomic ``Sequence`` increment; a uniqueness
violation on insert (e.g. a number reused after a manual reset) is retried
once with a fresh number inside a savepoint.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Set, Tuple
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import QuerySet

from modules.core.models import Sequence
from modules.orders.constants import (
    ORDER_NUMBER_MAX_ATTEMPTS,
    ORDER_NUMBER_SEQUENCE,
    TOTAL_SORT_ORDER,
    OrderStatus,
    OrderTotalCode,
)
from modules.orders.dtos import CheckoutLineDTO, RequestProvenanceDTO
from modules.orders.exceptions import OrderNumberUnavailable
from modules.orders.models import (
    Order,
    OrderHistory,
    OrderProduct,
    OrderProductOption,
    OrderTotal,
    ProcessedPaymentEvent,
)
from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)

_PREFETCH = ("totals", "history", "products__options")


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create (aggregate root + children)
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(
        self,
        customer_id: UUID,
        lines: Iterable[CheckoutLineDTO],
        provenance: RequestProvenanceDTO,
    ) -> Order:
        lines = list(lines)
        subtotal = sum(
            (option.price for line in lines for option in line.options),
            Decimal("0.00"),
        )
        order = self._insert_with_order_number(
            Order(
                customer_id=customer_id,
                order_status=OrderStatus.PENDING,
                order_total=subtotal,
                source=provenance.source,
                ip_address=provenance.ip_address,
                forwarded_ip=provenance.forwarded_ip,
                user_agent=provenance.user_agent,
                accept_language=provenance.accept_language,
            )
        )

        for line in lines:
            order_product = OrderProduct.objects.create(
                order=order,
                product_id=line.product_id,
                name=line.product_name,
            )
            OrderProductOption.objects.bulk_create(
                [
                    OrderProductOption(
                        order_product=order_product,
                        option_id=option.option_id,
                        name=option.name,
                        price=option.price,
                    )
                    for option in line.options
                ]
            )

        self._write_totals(order, subtotal, None)
        logger.info(
            "order.created",
            order_id=str(order.id),
            order_number=order.order_number,
            line_count=len(lines),
        )
        return order

    def _insert_with_order_number(self, order: Order) -> Order:
        for attempt in range(1, ORDER_NUMBER_MAX_ATTEMPTS + 1):
            order.order_number = str(Sequence.next_value(ORDER_NUMBER_SEQUENCE))
            try:
                with transaction.atomic():
                    order.save(force_insert=True)
                return order
            except IntegrityError:
                logger.warning(
                    "order.number_collision",
                    order_number=order.order_number,
                    attempt=attempt,
                )
        raise OrderNumberUnavailable()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with its totals, history and lines prefetched.

        Returns ``None`` for non-existent or malformed IDs.
        """
        try:
            return (
                Order.objects.select_related("customer", "coupon")
                .prefetch_related(*_PREFETCH)
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order holding a row-level lock (SELECT FOR UPDATE).

        Only the order row itself is locked (``of=("self",)``); related rows
        are loaded afterwards without locks.
        """
        try:
            return (
                Order.objects.select_for_update(of=("self",))
                .select_related("customer", "coupon")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_for_update_by_gateway_order_id(
        self, gateway_order_id: str
    ) -> Optional[Order]:
        if not gateway_order_id:
            return None
        return (
            Order.objects.select_for_update(of=("self",))
            .select_related("customer", "coupon")
            .filter(gateway_order_id=gateway_order_id)
            .first()
        )

    def list_for_customer(self, customer_id: UUID) -> QuerySet:
        return (
            Order.objects.filter(customer_id=customer_id)
            .select_related("coupon")
            .prefetch_related("totals")
            .order_by("-created_at", "-id")
        )

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def save(self, entity: Order) -> Order:
        entity.save()
        return entity

    def add_history(
        self, order: Order, status: str, comment: str, notify: bool = False
    ) -> OrderHistory:
        history = OrderHistory.objects.create(
            order=order,
            order_status=status,
            comment=comment,
            notify=notify,
        )
        logger.info(
            "order.history_added",
            order_id=str(order.id),
            order_status=status,
            notify=notify,
        )
        return history

    @transaction.atomic
    def replace_totals(
        self, order: Order, subtotal: Decimal, discount: Optional[Decimal] = None
    ) -> Order:
        order.order_total = self._write_totals(order, subtotal, discount)
        order.save(update_fields=["order_total", "coupon"])
        return order

    def _write_totals(
        self, order: Order, subtotal: Decimal, discount: Optional[Decimal]
    ) -> Decimal:
        total = max(Decimal("0.00"), subtotal - (discount or Decimal("0.00")))
        rows = [(OrderTotalCode.SUBTOTAL, subtotal)]
        if discount is not None:
            rows.append((OrderTotalCode.COUPON_DISCOUNT, discount))
        rows.append((OrderTotalCode.TOTAL, total))

        OrderTotal.objects.filter(order=order).delete()
        OrderTotal.objects.bulk_create(
            [
                OrderTotal(
                    order=order,
                    code=code,
                    title=OrderTotalCode(code).label,
                    value=value,
                    sort_order=TOTAL_SORT_ORDER[code],
                )
                for code, value in rows
            ]
        )
        # Drop any stale prefetch so get_total() sees the new rows.
        getattr(order, "_prefetched_objects_cache", {}).pop("totals", None)
        return total

    # ------------------------------------------------------------------
    # Order-specific queries
    # ------------------------------------------------------------------

    def find_purchased_options(
        self, customer_id: UUID, pairs: Set[Tuple[UUID, UUID]]
    ) -> Set[Tuple[UUID, UUID]]:
        if not pairs:
            return set()
        product_ids = {product_id for product_id, _ in pairs}
        option_ids = {option_id for _, option_id in pairs}
        owned = (
            OrderProductOption.objects.filter(
                order_product__order__customer_id=customer_id,
                order_product__order__order_status=OrderStatus.PAID,
                order_product__product_id__in=product_ids,
                option_id__in=option_ids,
            )
            .values_list("order_product__product_id", "option_id")
            .distinct()
        )
        return set(owned) & pairs

    def has_history_since(self, order: Order, marker: str, since: datetime) -> bool:
        return OrderHistory.objects.filter(
            order=order,
            comment__contains=marker,
            created_at__gte=since,
        ).exists()

    def has_payment_event(self, order: Order, reference: str, status: str) -> bool:
        return ProcessedPaymentEvent.objects.filter(
            order=order,
            gateway_reference=reference,
            order_status=status,
        ).exists()

    def record_payment_event(
        self, order: Order, reference: str, status: str, event_type: str
    ) -> bool:
        try:
            with transaction.atomic():
                ProcessedPaymentEvent.objects.create(
                    order=order,
                    gateway_reference=reference,
                    order_status=status,
                    event_type=event_type,
                )
        except IntegrityError:
            logger.info(
                "order.payment_event_duplicate",
                order_id=str(order.id),
                gateway_reference=reference,
                order_status=status,
            )
            return False
        return True
