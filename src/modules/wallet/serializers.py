"""Wallet DRF input serializers (output comes from the DTOs)."""

from __future__ import annotations

from rest_framework import serializers


class InitiateTopUpSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)


class VerifyTopUpSerializer(serializers.Serializer):
    razorpay_order_id = serializers.CharField(max_length=64)
    razorpay_payment_id = serializers.CharField(max_length=64)
    razorpay_signature = serializers.CharField(max_length=256)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
