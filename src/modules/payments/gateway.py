"""Payment gateway port and its Razorpay adapter.

Services depend on ``IPaymentGateway`` only.  The process-wide instance is
built once from ``settings.PAYMENT_GATEWAY_BACKEND`` when the payments app
is ready, and handed to services through their constructors; tests swap it
with ``set_payment_gateway``.

Amounts cross this boundary as ``Decimal`` major units (rupees); the
adapter converts to and from the gateway's integer minor units (paise).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import razorpay
import requests
import structlog
from django.conf import settings
from django.utils.module_loading import import_string
from razorpay.errors import (
    BadRequestError,
    ServerError,
    SignatureVerificationError,
)
from razorpay.errors import GatewayError as RazorpayGatewayError
from razorpay.utility import Utility

from modules.payments.exceptions import GatewayError, GatewayNotConfigured

logger = structlog.get_logger(__name__)

CAPTURED = "captured"

_UPSTREAM_ERRORS = (
    BadRequestError,
    ServerError,
    RazorpayGatewayError,
    requests.RequestException,
)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: int) -> Decimal:
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


def _notes(data: Dict[str, Any]) -> Dict[str, str]:
    # the API sends an empty list when an entity has no notes
    notes = data.get("notes") or {}
    return {str(key): str(value) for key, value in dict(notes).items()}


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount: Decimal
    currency: str
    receipt: str
    notes: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayPayment:
    id: str
    status: str
    amount: Decimal
    currency: str
    order_id: Optional[str] = None
    method: str = ""

    @property
    def is_captured(self) -> bool:
        return self.status == CAPTURED


class IPaymentGateway(ABC):
    """What the engine needs from a payment gateway."""

    key_id: str = ""

    @abstractmethod
    def create_order(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        """Create a gateway order carrying *reference* (our order id) in its notes."""

    @abstractmethod
    def fetch_order(self, order_id: str) -> GatewayOrder:
        """Look a gateway order up by id, notes included."""

    @abstractmethod
    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        """Look a payment up by id."""

    @abstractmethod
    def verify_payment_signature(
        self, order_id: str, payment_id: str, signature: str
    ) -> bool:
        """Check the checkout callback signature over ``order_id|payment_id``."""

    @abstractmethod
    def verify_webhook_signature(
        self, raw_body: bytes, signature: str, secret: str
    ) -> bool:
        """Check the HMAC-SHA256 signature of a webhook body."""


class RazorpayGateway(IPaymentGateway):
    """``IPaymentGateway`` backed by the official ``razorpay`` SDK.

    Missing credentials do not prevent construction (the app must boot
    without them); every call that needs them raises ``GatewayNotConfigured``.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        client: Optional[razorpay.Client] = None,
    ) -> None:
        self.key_id = key_id
        if client is None and key_id and key_secret:
            client = razorpay.Client(auth=(key_id, key_secret))
        self._client = client
        self._webhook_utility = Utility()

    @classmethod
    def from_settings(cls) -> RazorpayGateway:
        return cls(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)

    def _require_client(self) -> razorpay.Client:
        if self._client is None:
            raise GatewayNotConfigured()
        return self._client

    # ------------------------------------------------------------------
    # Orders / payments
    # ------------------------------------------------------------------

    def create_order(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        client = self._require_client()
        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": reference,
            "notes": {"orderId": reference, **(notes or {})},
            "payment_capture": 1,
        }
        try:
            data = client.order.create(data=payload)
        except _UPSTREAM_ERRORS as exc:
            logger.error(
                "gateway.order_create_failed",
                reference=reference,
                error=exc.__class__.__name__,
            )
            raise GatewayError() from exc

        logger.info(
            "gateway.order_created",
            reference=reference,
            gateway_order_id=data["id"],
        )
        return GatewayOrder(
            id=data["id"],
            amount=from_minor_units(data["amount"]),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", reference),
            notes=_notes(data),
        )

    def fetch_order(self, order_id: str) -> GatewayOrder:
        client = self._require_client()
        try:
            data: Dict[str, Any] = client.order.fetch(order_id)
        except _UPSTREAM_ERRORS as exc:
            logger.error(
                "gateway.order_fetch_failed",
                gateway_order_id=order_id,
                error=exc.__class__.__name__,
            )
            raise GatewayError() from exc

        return GatewayOrder(
            id=data["id"],
            amount=from_minor_units(data.get("amount", 0)),
            currency=data.get("currency", ""),
            receipt=data.get("receipt") or "",
            notes=_notes(data),
        )

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        client = self._require_client()
        try:
            data: Dict[str, Any] = client.payment.fetch(payment_id)
        except _UPSTREAM_ERRORS as exc:
            logger.error(
                "gateway.payment_fetch_failed",
                payment_id=payment_id,
                error=exc.__class__.__name__,
            )
            raise GatewayError() from exc

        return GatewayPayment(
            id=data["id"],
            status=data.get("status", ""),
            amount=from_minor_units(data.get("amount", 0)),
            currency=data.get("currency", ""),
            order_id=data.get("order_id"),
            method=data.get("method") or "",
        )

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------

    def verify_payment_signature(
        self, order_id: str, payment_id: str, signature: str
    ) -> bool:
        client = self._require_client()
        try:
            client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except (SignatureVerificationError, TypeError, ValueError):
            return False
        return True

    def verify_webhook_signature(
        self, raw_body: bytes, signature: str, secret: str
    ) -> bool:
        try:
            body = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            return False
        # compare_digest raises TypeError for non-ASCII str signatures
        try:
            self._webhook_utility.verify_webhook_signature(body, signature, secret)
        except (SignatureVerificationError, TypeError, ValueError):
            return False
        return True


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_gateway: Optional[IPaymentGateway] = None


def build_payment_gateway() -> IPaymentGateway:
    backend = import_string(settings.PAYMENT_GATEWAY_BACKEND)
    return backend.from_settings()


def get_payment_gateway() -> IPaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = build_payment_gateway()
    return _gateway


def set_payment_gateway(gateway: Optional[IPaymentGateway]) -> None:
    """Replace the process-wide gateway (``None`` rebuilds it on next use)."""
    global _gateway
    _gateway = gateway
