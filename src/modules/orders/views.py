"""Checkout and order-history API views.

Exposes ``CheckoutService`` via HTTP using DRF ViewSets.  Domain
exceptions propagate to ``modules.core.exceptions.exception_handler``,
which renders them; the views never swallow generic exceptions.
"""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter
from rest_framework.permissions import IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.cart.services import CartService
from modules.core.middleware import get_client_ip, get_forwarded_ip
from modules.coupons.repositories.django_repository import CouponDjangoRepository
from modules.coupons.services import CouponService
from modules.customers.permissions import IsCustomer, get_request_customer
from modules.orders.dtos import RequestProvenanceDTO
from modules.orders.filters import OrderFilter
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.serializers import (
    CreatePaymentOrderSerializer,
    OrderListSerializer,
    OrderSerializer,
    PaymentFailedSerializer,
    RetryPaymentSerializer,
    StartCheckoutSerializer,
    VerifyPaymentSerializer,
)
from modules.orders.services import CheckoutService
from modules.payments.gateway import get_payment_gateway


def build_checkout_service() -> CheckoutService:
    order_repository = OrderDjangoRepository()
    return CheckoutService(
        order_repository=order_repository,
        coupon_service=CouponService(CouponDjangoRepository(), order_repository),
        cart_service=CartService(),
        payment_gateway=get_payment_gateway(),
    )


def request_provenance(request: Request, source: str) -> RequestProvenanceDTO:
    return RequestProvenanceDTO(
        ip_address=get_client_ip(request),
        forwarded_ip=get_forwarded_ip(request),
        user_agent=request.META.get("HTTP_USER_AGENT", ""),
        accept_language=request.META.get("HTTP_ACCEPT_LANGUAGE", ""),
        source=source,
    )


class CheckoutViewSet(GenericViewSet):
    """Customer checkout flow.

    Uses ``CheckoutService`` with injected repositories and gateway (DIP).
    """

    permission_classes = [IsAuthenticated, IsCustomer]
    throttle_scope = "checkout"

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_checkout_service()

    @action(detail=False, methods=["post"], url_path="start")
    def start(self, request: Request) -> Response:
        """POST /api/v1/checkout/start/"""
        serializer = StartCheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = self._service.start_checkout(
            get_request_customer(request),
            request_provenance(request, serializer.validated_data["source"]),
        )
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="payment/create")
    def create_payment(self, request: Request) -> Response:
        """POST /api/v1/checkout/payment/create/"""
        serializer = CreatePaymentOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = self._service.create_payment_order(
            data["order_id"], get_request_customer(request), data.get("source")
        )
        return Response(result.model_dump(mode="json"))

    @action(detail=False, methods=["post"], url_path="payment/verify")
    def verify_payment(self, request: Request) -> Response:
        """POST /api/v1/checkout/payment/verify/"""
        serializer = VerifyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = self._service.complete_checkout(
            order_id=data["order_id"],
            customer=get_request_customer(request),
            gateway_order_id=data["razorpay_order_id"],
            payment_id=data["razorpay_payment_id"],
            signature=data["razorpay_signature"],
        )
        return Response(result.model_dump(mode="json"))

    @action(detail=True, methods=["get"], url_path="status")
    def order_status(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/checkout/{pk}/status/"""
        result = self._service.get_status(pk, get_request_customer(request))
        return Response(result.model_dump(mode="json"))

    @action(detail=True, methods=["post"])
    def cancel(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/checkout/{pk}/cancel/"""
        order = self._service.cancel_checkout(pk, get_request_customer(request))
        return Response(OrderSerializer(order).data)

    @action(detail=False, methods=["put"], url_path="payment-failed")
    def payment_failed(self, request: Request) -> Response:
        """PUT /api/v1/checkout/payment-failed/"""
        serializer = PaymentFailedSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = self._service.mark_payment_failed(
            data["order_id"], get_request_customer(request), data["reason"]
        )
        return Response(OrderSerializer(order).data)

    @action(detail=False, methods=["post"], url_path="retry-payment")
    def retry_payment(self, request: Request) -> Response:
        """POST /api/v1/checkout/retry-payment/"""
        serializer = RetryPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self._service.retry_payment(
            serializer.validated_data["order_id"], get_request_customer(request)
        )
        return Response(result.model_dump(mode="json"))


class OrderViewSet(GenericViewSet):
    """The authenticated customer's order history (read-only).

    Filtering (status, date range, total range) is handled by
    ``OrderFilter``; ordering by ``OrderingFilter``.  Results are paginated.
    """

    queryset = Order.objects.none()
    permission_classes = [IsAuthenticated, IsCustomer]
    filterset_class = OrderFilter
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    ordering_fields = ["created_at", "order_total", "order_status"]
    ordering = ["-created_at", "-id"]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_checkout_service()

    def get_queryset(self):
        return self._service.list_orders(get_request_customer(self.request))

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/"""
        queryset = self.filter_queryset(self.get_queryset())
        page = self.paginate_queryset(queryset)
        serializer = OrderListSerializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/"""
        order = self._service.get_order(pk, get_request_customer(request))
        return Response(OrderSerializer(order).data)
