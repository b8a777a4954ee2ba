"""Order aggregate: Order, purchased lines, totals breakdown and history.

Business rules implemented:
- Orders are created ``pending`` and only move along ``VALID_TRANSITIONS``
  (enforced by ``OrderStateMachine``).
- Every status change appends an ``OrderHistory`` row, so the latest
  history entry always carries the current ``order_status``.
- The ``total`` row of the totals breakdown always equals ``order_total``
  (both are written together by the repository).
- Purchased options snapshot their name and price at checkout time.
- ``ProcessedPaymentEvent`` records every gateway payment already applied
  to an order; its unique constraint is the idempotency key for webhook
  and checkout confirmation replays.
- Orders are never deleted; customer and catalog FKs use PROTECT.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from django.db import models
from django.db.models import Sum

from modules.core.models import BaseModel
from modules.orders.constants import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    OrderSource,
    OrderStatus,
    OrderTotalCode,
    PaymentMethod,
)
from shared.domain.events import DomainEventMixin


class Order(DomainEventMixin, BaseModel):
    """Order aggregate root.

    ``order_number`` is the sequential human-readable identifier shown to
    customers; the UUIDv7 ``id`` is used for every internal reference,
    including the reference attached to gateway orders.
    """

    order_number: models.CharField = models.CharField(
        max_length=20, unique=True, editable=False
    )
    customer: models.ForeignKey = models.ForeignKey(
        "customers.Customer",
        on_delete=models.PROTECT,
        related_name="orders",
    )
    order_status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
    )
    order_total: models.DecimalField = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    coupon: models.ForeignKey = models.ForeignKey(
        "coupons.Coupon",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )
    gateway_order_id: models.CharField = models.CharField(
        max_length=64, blank=True, default="", db_index=True
    )
    payment_method: models.CharField = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.RAZORPAY,
    )
    payment_code: models.CharField = models.CharField(
        max_length=20, default=PaymentMethod.RAZORPAY
    )
    source: models.CharField = models.CharField(
        max_length=10,
        choices=OrderSource.choices,
        default=OrderSource.WEB,
    )
    ip_address: models.GenericIPAddressField = models.GenericIPAddressField(
        null=True, blank=True
    )
    forwarded_ip: models.CharField = models.CharField(
        max_length=64, blank=True, default=""
    )
    user_agent: models.TextField = models.TextField(blank=True, default="")
    accept_language: models.CharField = models.CharField(
        max_length=255, blank=True, default=""
    )

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["order_status"], name="orders_status_idx"),
            models.Index(fields=["customer", "-created_at"], name="orders_customer_idx"),
        ]

    # ------------------------------------------------------------------
    # State Machine helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.order_status in TERMINAL_STATES

    def can_transition_to(self, new_status: str) -> bool:
        allowed = VALID_TRANSITIONS.get(self.order_status, set())
        return new_status in allowed

    # ------------------------------------------------------------------
    # Money helpers
    # ------------------------------------------------------------------

    def compute_subtotal(self) -> Decimal:
        """Sum of the captured option prices (pre-discount)."""
        total = OrderProductOption.objects.filter(
            order_product__order_id=self.pk
        ).aggregate(total=Sum("price"))["total"]
        return total or Decimal("0.00")

    def option_pairs(self) -> set:
        """``(product_id, option_id)`` pairs bought by this order."""
        return set(
            OrderProductOption.objects.filter(order_product__order_id=self.pk).values_list(
                "order_product__product_id", "option_id"
            )
        )

    def get_total(self, code: str) -> Optional[Decimal]:
        for row in self.totals.all():
            if row.code == code:
                return row.value
        return None

    def is_owned_by(self, customer) -> bool:
        return self.customer_id == getattr(customer, "pk", customer)

    def __str__(self) -> str:
        return f"{self.order_number} ({self.order_status})"


class OrderProduct(BaseModel):
    """A purchased product inside an order (snapshot of its name)."""

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="products",
    )
    product: models.ForeignKey = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="order_products",
    )
    name: models.CharField = models.CharField(max_length=255)

    class Meta:
        db_table = "order_products"
        ordering = ["created_at"]

    def __str__(self) -> str:
        return self.name


class OrderProductOption(BaseModel):
    """A purchased option with the price captured at checkout."""

    order_product: models.ForeignKey = models.ForeignKey(
        "orders.OrderProduct",
        on_delete=models.CASCADE,
        related_name="options",
    )
    option: models.ForeignKey = models.ForeignKey(
        "products.ProductOption",
        on_delete=models.PROTECT,
        related_name="order_lines",
    )
    name: models.CharField = models.CharField(max_length=255)
    price: models.DecimalField = models.DecimalField(max_digits=10, decimal_places=2)

    class Meta:
        db_table = "order_product_options"
        ordering = ["created_at"]

    def __str__(self) -> str:
        return f"{self.name} ({self.price})"


class OrderTotal(BaseModel):
    """One row of the ordered totals breakdown (subtotal, discount, total)."""

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="totals",
    )
    code: models.CharField = models.CharField(
        max_length=20, choices=OrderTotalCode.choices
    )
    title: models.CharField = models.CharField(max_length=64)
    value: models.DecimalField = models.DecimalField(max_digits=12, decimal_places=2)
    sort_order: models.PositiveSmallIntegerField = models.PositiveSmallIntegerField()

    class Meta:
        db_table = "order_totals"
        ordering = ["sort_order"]
        constraints = [
            models.UniqueConstraint(
                fields=["order", "code"], name="order_totals_unique_code"
            ),
        ]

    def __str__(self) -> str:
        return f"{self.code}={self.value}"


class OrderHistory(BaseModel):
    """Append-only audit trail of an order.

    Status transitions and informational notes both land here; a note
    carries the status the order had when it was written.
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="history",
    )
    order_status: models.CharField = models.CharField(
        max_length=20, choices=OrderStatus.choices
    )
    comment: models.TextField = models.TextField(blank=True, default="")
    notify: models.BooleanField = models.BooleanField(default=False)

    class Meta:
        db_table = "order_history"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["order", "created_at"], name="order_history_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.order_id} [{self.order_status}] {self.comment}"


class ProcessedPaymentEvent(BaseModel):
    """Gateway payment/order id already applied to an order for a status."""

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="payment_events",
    )
    gateway_reference: models.CharField = models.CharField(max_length=64)
    order_status: models.CharField = models.CharField(
        max_length=20, choices=OrderStatus.choices
    )
    event_type: models.CharField = models.CharField(max_length=64)

    class Meta:
        db_table = "order_payment_events"
        constraints = [
            models.UniqueConstraint(
                fields=["order", "gateway_reference", "order_status"],
                name="order_payment_events_unique",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.event_type} {self.gateway_reference} -> {self.order_status}"
