"""Order DRF serializers for API input/output.

The serializer operates at the Interface layer (API Views).
Business logic lives in the Service Layer, which receives
Pydantic DTOs from ``dtos.py``.
"""

from __future__ import annotations

from rest_framework import serializers

from modules.orders.constants import OrderSource
from modules.orders.models import (
    Order,
    OrderHistory,
    OrderProduct,
    OrderProductOption,
    OrderTotal,
)

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class StartCheckoutSerializer(serializers.Serializer):
    source = serializers.ChoiceField(
        choices=OrderSource.choices, required=False, default=OrderSource.WEB
    )


class CreatePaymentOrderSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    source = serializers.ChoiceField(choices=OrderSource.choices, required=False)


class VerifyPaymentSerializer(serializers.Serializer):
    """Checkout form callback: the three values signed by the gateway."""

    order_id = serializers.UUIDField()
    razorpay_order_id = serializers.CharField(max_length=64)
    razorpay_payment_id = serializers.CharField(max_length=64)
    razorpay_signature = serializers.CharField(max_length=256)


class PaymentFailedSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    reason = serializers.CharField(
        max_length=500, required=False, default="", allow_blank=True
    )


class RetryPaymentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class OrderProductOptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderProductOption
        fields = ["id", "option_id", "name", "price"]
        read_only_fields = fields


class OrderProductSerializer(serializers.ModelSerializer):
    """Purchased product with the options captured at checkout."""

    options = OrderProductOptionSerializer(many=True, read_only=True)

    class Meta:
        model = OrderProduct
        fields = ["id", "product_id", "name", "options"]
        read_only_fields = fields


class OrderTotalSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderTotal
        fields = ["code", "title", "value", "sort_order"]
        read_only_fields = fields


class OrderHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderHistory
        fields = ["id", "order_status", "comment", "notify", "created_at"]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """Read serializer for orders with lines, totals and history."""

    products = OrderProductSerializer(many=True, read_only=True)
    totals = OrderTotalSerializer(many=True, read_only=True)
    history = OrderHistorySerializer(many=True, read_only=True)
    coupon_code = serializers.CharField(
        source="coupon.code", read_only=True, default=None
    )

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer_id",
            "order_status",
            "order_total",
            "coupon_code",
            "payment_method",
            "payment_code",
            "gateway_order_id",
            "source",
            "created_at",
            "updated_at",
            "products",
            "totals",
            "history",
        ]
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for order list (no nested relations)."""

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "order_status",
            "order_total",
            "payment_method",
            "created_at",
        ]
        read_only_fields = fields
