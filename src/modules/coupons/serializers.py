"""Coupon DRF serializers.

Input serializers only check shapes; the coupon invariants live in the
DTOs (``dtos.py``) so the service sees the same rules from every entry
point.
"""

from __future__ import annotations

from rest_framework import serializers

from modules.coupons.dtos import CODE_MAX_LENGTH
from modules.coupons.models import Coupon, CouponType

# ---------------------------------------------------------------------------
# Customer input
# ---------------------------------------------------------------------------


class ApplyCouponSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    code = serializers.CharField(max_length=CODE_MAX_LENGTH, trim_whitespace=True)


# ---------------------------------------------------------------------------
# Admin input
# ---------------------------------------------------------------------------


class CouponWriteSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=128)
    code = serializers.CharField(max_length=CODE_MAX_LENGTH)
    type = serializers.ChoiceField(choices=CouponType.choices, default=CouponType.PERCENTAGE)
    discount = serializers.DecimalField(max_digits=10, decimal_places=2)
    logged = serializers.BooleanField(default=False)
    min_amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    max_discount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    date_start = serializers.DateTimeField(required=False)
    date_end = serializers.DateTimeField(required=False, allow_null=True)
    total_uses = serializers.IntegerField(min_value=0, required=False)
    customer_uses = serializers.IntegerField(min_value=0, required=False)
    auto_apply = serializers.BooleanField(default=False)
    is_active = serializers.BooleanField(default=True)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class CouponSerializer(serializers.ModelSerializer):
    class Meta:
        model = Coupon
        fields = [
            "id",
            "name",
            "code",
            "type",
            "discount",
            "logged",
            "min_amount",
            "max_discount",
            "date_start",
            "date_end",
            "total_uses",
            "customer_uses",
            "auto_apply",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
