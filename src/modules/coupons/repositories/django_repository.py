"""Django ORM implementation of the Coupon repository."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count, Q, QuerySet, Sum

from modules.coupons.models import Coupon, CouponUsage
from modules.coupons.repositories.interfaces import (
    CouponUsageCounts,
    ICouponRepository,
)

logger = structlog.get_logger(__name__)


def _valid_at(now: datetime) -> Q:
    return (
        Q(is_active=True, date_start__lte=now)
        & (Q(date_end__isnull=True) | Q(date_end__gte=now))
    )


class CouponDjangoRepository(ICouponRepository):
    def get_by_id(self, id: str) -> Optional[Coupon]:
        try:
            return Coupon.objects.filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def get_for_update(self, id: str) -> Optional[Coupon]:
        try:
            return Coupon.objects.select_for_update().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def save(self, entity: Coupon) -> Coupon:
        entity.save()
        return entity

    def list_all(self) -> QuerySet:
        return Coupon.objects.order_by("-created_at", "-id")

    def get_active_by_code(self, code: str, now: datetime) -> Optional[Coupon]:
        return Coupon.objects.filter(_valid_at(now), code=code).first()

    def get_auto_apply(self, now: datetime) -> Optional[Coupon]:
        return Coupon.objects.filter(_valid_at(now), auto_apply=True).first()

    def code_exists(self, code: str, exclude_id: Optional[UUID] = None) -> bool:
        queryset = Coupon.objects.filter(code=code)
        if exclude_id is not None:
            queryset = queryset.exclude(id=exclude_id)
        return queryset.exists()

    def unset_auto_apply(self, exclude_id: Optional[UUID] = None) -> int:
        queryset = Coupon.objects.select_for_update().filter(auto_apply=True)
        if exclude_id is not None:
            queryset = queryset.exclude(id=exclude_id)
        ids = list(queryset.values_list("id", flat=True))
        if not ids:
            return 0
        return Coupon.objects.filter(id__in=ids).update(auto_apply=False)

    def usage_counts(
        self, coupon_id: UUID, customer_id: UUID, order_id: UUID
    ) -> CouponUsageCounts:
        counts = CouponUsage.objects.filter(
            Q(coupon_id=coupon_id) | Q(order_id=order_id)
        ).aggregate(
            total=Count("id", filter=Q(coupon_id=coupon_id)),
            by_customer=Count(
                "id", filter=Q(coupon_id=coupon_id, customer_id=customer_id)
            ),
            by_order=Count("id", filter=Q(order_id=order_id)),
        )
        return CouponUsageCounts(
            total=counts["total"] or 0,
            by_customer=counts["by_customer"] or 0,
            by_order=counts["by_order"] or 0,
        )

    def max_uses_by_one_customer(self, coupon_id: UUID) -> int:
        per_customer = (
            CouponUsage.objects.filter(coupon_id=coupon_id)
            .values("customer_id")
            .annotate(uses=Count("id"))
            .values_list("uses", flat=True)
        )
        return max(per_customer, default=0)

    def usage_breakdown(self, coupon_id: UUID) -> tuple[int, Decimal, Dict[str, int]]:
        usages = CouponUsage.objects.filter(coupon_id=coupon_id)
        totals = usages.aggregate(uses=Count("id"), discount=Sum("discount_amount"))
        per_customer = {
            str(row["customer_id"]): row["uses"]
            for row in usages.values("customer_id").annotate(uses=Count("id"))
        }
        return (
            totals["uses"] or 0,
            totals["discount"] or Decimal("0.00"),
            per_customer,
        )

    def get_usage_for_order(self, order_id: UUID) -> Optional[CouponUsage]:
        return CouponUsage.objects.filter(order_id=order_id).first()

    def create_usage(
        self,
        coupon_id: UUID,
        customer_id: UUID,
        order_id: UUID,
        discount_amount: Decimal,
        order_total: Decimal,
    ) -> Optional[CouponUsage]:
        try:
            with transaction.atomic():
                return CouponUsage.objects.create(
                    coupon_id=coupon_id,
                    customer_id=customer_id,
                    order_id=order_id,
                    discount_amount=discount_amount,
                    order_total=order_total,
                )
        except IntegrityError:
            logger.info("coupon.usage_already_recorded", order_id=str(order_id))
            return None

    def delete_usage_for_order(self, order_id: UUID) -> int:
        deleted, _ = CouponUsage.objects.filter(order_id=order_id).delete()
        return deleted
