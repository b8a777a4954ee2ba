"""Wallet API views."""

from __future__ import annotations

from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.customers.permissions import IsCustomer, get_request_customer
from modules.payments.gateway import get_payment_gateway
from modules.wallet.repositories.django_repository import WalletDjangoRepository
from modules.wallet.serializers import InitiateTopUpSerializer, VerifyTopUpSerializer
from modules.wallet.services import WalletService


class WalletViewSet(GenericViewSet):
    permission_classes = [IsAuthenticated, IsCustomer]
    throttle_scope = "wallet"

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = WalletService(WalletDjangoRepository(), get_payment_gateway())

    def list(self, request: Request) -> Response:
        """GET /api/v1/wallet/"""
        result = self._service.get_wallet(get_request_customer(request))
        return Response(result.model_dump(mode="json"))

    @action(detail=False, methods=["post"], url_path="top-up/initiate")
    def initiate_top_up(self, request: Request) -> Response:
        """POST /api/v1/wallet/top-up/initiate/"""
        serializer = InitiateTopUpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self._service.initiate_top_up(
            get_request_customer(request), serializer.validated_data["amount"]
        )
        return Response(result.model_dump(mode="json"))

    @action(detail=False, methods=["post"], url_path="top-up/verify")
    def verify_top_up(self, request: Request) -> Response:
        """POST /api/v1/wallet/top-up/verify/"""
        serializer = VerifyTopUpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = self._service.verify_top_up(
            customer=get_request_customer(request),
            gateway_order_id=data["razorpay_order_id"],
            payment_id=data["razorpay_payment_id"],
            signature=data["razorpay_signature"],
            amount=data["amount"],
        )
        return Response(result.model_dump(mode="json"))
