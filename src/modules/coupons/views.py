"""Coupon API views: customer apply/auto-apply and staff administration."""

from __future__ import annotations

from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.coupons.dtos import CouponDefinitionDTO, CouponUpdateDTO
from modules.coupons.exceptions import InvalidCoupon
from modules.coupons.models import Coupon
from modules.coupons.repositories.django_repository import CouponDjangoRepository
from modules.coupons.serializers import (
    ApplyCouponSerializer,
    CouponSerializer,
    CouponWriteSerializer,
)
from modules.coupons.services import CouponService
from modules.customers.permissions import IsCustomer, get_request_customer
from modules.orders.repositories.django_repository import OrderDjangoRepository


def build_coupon_service() -> CouponService:
    return CouponService(CouponDjangoRepository(), OrderDjangoRepository())


def _first_error(exc: PydanticValidationError) -> str:
    message = exc.errors()[0]["msg"]
    return message.removeprefix("Value error, ")


class CouponViewSet(GenericViewSet):
    """Customer-facing coupon actions on their own pending orders."""

    permission_classes = [IsAuthenticated, IsCustomer]
    throttle_scope = "coupons"

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_coupon_service()

    @action(detail=False, methods=["post"], url_path="apply")
    def apply(self, request: Request) -> Response:
        """POST /api/v1/coupons/apply/"""
        serializer = ApplyCouponSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = self._service.apply(
            data["order_id"], get_request_customer(request), data["code"]
        )
        return Response(result.model_dump(mode="json"))

    @action(
        detail=False,
        methods=["get"],
        url_path=r"auto-apply/(?P<order_id>[^/.]+)",
    )
    def auto_apply(self, request: Request, order_id: str | None = None) -> Response:
        """GET /api/v1/coupons/auto-apply/{order_id}/"""
        result = self._service.auto_apply(order_id, get_request_customer(request))
        return Response(result.model_dump(mode="json"))


class CouponAdminViewSet(GenericViewSet):
    """Staff coupon management.

    Does **not** extend ``ModelViewSet``: writes go through
    ``CouponService`` so the definition invariants and the single
    auto-apply rule are enforced in one place.
    """

    queryset = Coupon.objects.none()
    permission_classes = [IsAdminUser]
    serializer_class = CouponSerializer

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_coupon_service()

    def get_queryset(self):
        return self._service.list_coupons()

    def list(self, request: Request) -> Response:
        """GET /api/v1/admin/coupons/"""
        page = self.paginate_queryset(self.get_queryset())
        serializer = CouponSerializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/admin/coupons/{pk}/"""
        return Response(CouponSerializer(self._service.get_coupon(pk)).data)

    def create(self, request: Request) -> Response:
        """POST /api/v1/admin/coupons/"""
        serializer = CouponWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            dto = CouponDefinitionDTO(**serializer.validated_data)
        except PydanticValidationError as exc:
            raise InvalidCoupon(_first_error(exc)) from exc

        coupon = self._service.create_coupon(dto)
        return Response(CouponSerializer(coupon).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request: Request, pk: str | None = None) -> Response:
        """PATCH /api/v1/admin/coupons/{pk}/"""
        serializer = CouponWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        try:
            dto = CouponUpdateDTO(**serializer.validated_data)
        except PydanticValidationError as exc:
            raise InvalidCoupon(_first_error(exc)) from exc

        coupon = self._service.update_coupon(pk, dto)
        return Response(CouponSerializer(coupon).data)

    @action(detail=True, methods=["get"], url_path="usage-stats")
    def usage_stats(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/admin/coupons/{pk}/usage-stats/"""
        result = self._service.usage_stats(pk)
        return Response(result.model_dump(mode="json"))
