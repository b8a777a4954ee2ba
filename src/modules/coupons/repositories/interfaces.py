"""Coupon repository interface."""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from modules.coupons.models import Coupon, CouponUsage


@dataclass(frozen=True)
class CouponUsageCounts:
    """Redemption counters read in a single query."""

    total: int
    by_customer: int
    by_order: int


class ICouponRepository(IRepository["Coupon"]):
    @abstractmethod
    def list_all(self) -> QuerySet:
        """Every coupon, newest first."""

    @abstractmethod
    def get_active_by_code(self, code: str, now: datetime) -> Optional[Coupon]:
        """Active coupon whose validity window contains *now*."""

    @abstractmethod
    def get_auto_apply(self, now: datetime) -> Optional[Coupon]:
        """The single active auto-apply coupon, if any."""

    @abstractmethod
    def code_exists(self, code: str, exclude_id: Optional[UUID] = None) -> bool:
        """Whether another coupon already uses *code*."""

    @abstractmethod
    def unset_auto_apply(self, exclude_id: Optional[UUID] = None) -> int:
        """Clear the auto-apply flag on every other coupon."""

    @abstractmethod
    def usage_counts(
        self, coupon_id: UUID, customer_id: UUID, order_id: UUID
    ) -> CouponUsageCounts:
        """Total, per-customer and per-order usage counts."""

    @abstractmethod
    def max_uses_by_one_customer(self, coupon_id: UUID) -> int:
        """Highest number of redemptions of the coupon by a single customer."""

    @abstractmethod
    def usage_breakdown(self, coupon_id: UUID) -> tuple[int, Decimal, Dict[str, int]]:
        """``(uses, total discount, uses per customer id)`` for reporting."""

    @abstractmethod
    def get_usage_for_order(self, order_id: UUID) -> Optional[CouponUsage]:
        """The redemption recorded for an order."""

    @abstractmethod
    def create_usage(
        self,
        coupon_id: UUID,
        customer_id: UUID,
        order_id: UUID,
        discount_amount: Decimal,
        order_total: Decimal,
    ) -> Optional[CouponUsage]:
        """Record a redemption; ``None`` if the order already has one."""

    @abstractmethod
    def delete_usage_for_order(self, order_id: UUID) -> int:
        """Remove the order's redemption (0 when there was none)."""
