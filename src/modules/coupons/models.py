"""Coupon and CouponUsage models.

Business rules implemented:
- ``code`` is unique and stored uppercase.
- Fixed coupons never discount more than their ``min_amount``; percentage
  coupons stay within 0-100 (both also enforced by check constraints).
- At most one coupon is flagged ``auto_apply`` (partial unique constraint).
- ``total_uses`` / ``customer_uses`` of 0 mean unlimited; ``max_discount``
  of 0 means no cap.
- ``CouponUsage`` rows exist only for paid orders, one per order.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from modules.core.models import BaseModel


class CouponType(models.TextChoices):
    FIXED = "F", "Fixed amount"
    PERCENTAGE = "P", "Percentage"


class Coupon(BaseModel):
    name = models.CharField(max_length=128)
    code = models.CharField(max_length=50, unique=True)
    type = models.CharField(
        max_length=1,
        choices=CouponType.choices,
        default=CouponType.PERCENTAGE,
    )
    discount = models.DecimalField(max_digits=10, decimal_places=2)
    logged = models.BooleanField(default=False)
    min_amount = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("0.00")
    )
    max_discount = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("0.00")
    )
    date_start = models.DateTimeField(default=timezone.now)
    date_end = models.DateTimeField(null=True, blank=True)
    total_uses = models.PositiveIntegerField(default=1)
    customer_uses = models.PositiveIntegerField(default=1)
    auto_apply = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "coupons"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["code", "is_active"], name="coupons_code_active_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["auto_apply"],
                condition=Q(auto_apply=True),
                name="coupons_single_auto_apply",
            ),
            models.CheckConstraint(
                condition=Q(discount__gte=0),
                name="coupons_discount_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(type=CouponType.FIXED) | Q(discount__lte=100),
                name="coupons_percentage_within_100",
            ),
            models.CheckConstraint(
                condition=Q(type=CouponType.PERCENTAGE)
                | Q(discount__lte=F("min_amount")),
                name="coupons_fixed_within_min_amount",
            ),
        ]

    def save(self, *args, **kwargs) -> None:
        if self.code:
            self.code = self.code.strip().upper()
        super().save(*args, **kwargs)

    def is_valid_at(self, moment=None) -> bool:
        moment = moment or timezone.now()
        if not self.is_active or self.date_start > moment:
            return False
        return self.date_end is None or moment <= self.date_end

    def calculate_discount(self, subtotal: Decimal) -> Decimal:
        """Discount for *subtotal*, capped by ``max_discount`` and the subtotal."""
        if self.type == CouponType.PERCENTAGE:
            discount = subtotal * self.discount / Decimal("100")
        else:
            discount = self.discount
        if self.max_discount > 0:
            discount = min(discount, self.max_discount)
        discount = min(discount, subtotal)
        return discount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def ineligibility_reason(self, subtotal: Decimal) -> Optional[str]:
        """Why the coupon cannot discount *subtotal* (``None`` when it can).

        Usage limits are checked separately since they need the ledger.
        """
        if subtotal < self.min_amount:
            return f"Minimum order amount of {self.min_amount} required for this coupon."
        if self.type == CouponType.FIXED:
            if self.discount > self.min_amount:
                return "Coupon discount exceeds its minimum order amount."
            if subtotal < self.discount:
                return "Order subtotal is lower than the coupon discount."
        return None

    def __str__(self) -> str:
        return f"{self.code} ({self.get_type_display()} {self.discount})"


class CouponUsage(BaseModel):
    """A confirmed redemption: written when the order is paid."""

    coupon = models.ForeignKey(
        "coupons.Coupon",
        on_delete=models.PROTECT,
        related_name="usages",
    )
    customer = models.ForeignKey(
        "customers.Customer",
        on_delete=models.PROTECT,
        related_name="coupon_usages",
    )
    order = models.OneToOneField(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="coupon_usage",
    )
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2)
    order_total = models.DecimalField(max_digits=12, decimal_places=2)
    used_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "coupon_usages"
        ordering = ["-used_at"]
        indexes = [
            models.Index(fields=["coupon", "customer"], name="coupon_usage_customer_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.coupon_id} on {self.order_id}"
