"""Payment gateway webhook reconciliation.

The gateway delivers payment/order events at least once and in no
particular order.  ``WebhookReconciler`` turns each delivery into at most
one order transition:

- ``parse`` authenticates the raw body (HMAC signature) and decodes it;
  anything it rejects is answered with HTTP 400 by the view.
- ``reconcile`` finds the order the event refers to, locks it and applies
  the transition from ``EVENT_RULES`` unless the processed-payment ledger
  shows the same gateway reference was already applied for that status.

Once a delivery is authentic the gateway always gets HTTP 200: business
rejections are reported in the body (``processed: false``) and internal
errors are logged at ``critical`` instead of being retried forever.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Optional
from uuid import UUID

import structlog
from django.conf import settings
from django.db import transaction

from modules.cart.services import CartService
from modules.coupons.repositories.django_repository import CouponDjangoRepository
from modules.coupons.services import CouponService
from modules.orders.constants import OrderStatus
from modules.orders.events import OrderPaymentFailed
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import publish_after_commit
from modules.orders.state_machine import OrderStateMachine
from modules.payments.exceptions import InvalidWebhook
from modules.payments.gateway import from_minor_units, get_payment_gateway

if TYPE_CHECKING:
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.payments.gateway import IPaymentGateway

logger = structlog.get_logger(__name__)

SUCCESS = "success"
NEUTRAL = "neutral"
FAILURE = "failure"

PAYMENT_ENTITY = "payment"
ORDER_ENTITY = "order"


@dataclass(frozen=True)
class EventRule:
    """How one gateway event type moves an order."""

    entity: str
    target: str
    sources: FrozenSet[str]
    outcome: str


_PAYABLE = frozenset({OrderStatus.PENDING, OrderStatus.AUTHORIZED})

# ``sources`` are checked after the processed-payment ledger: a replay of an
# applied event on an order that has since moved on is answered
# ``idempotent`` rather than ``Order not in valid state``.
EVENT_RULES: Dict[str, EventRule] = {
    "payment.captured": EventRule(PAYMENT_ENTITY, OrderStatus.PAID, _PAYABLE, SUCCESS),
    "order.paid": EventRule(ORDER_ENTITY, OrderStatus.PAID, _PAYABLE, SUCCESS),
    "payment.authorized": EventRule(
        PAYMENT_ENTITY,
        OrderStatus.AUTHORIZED,
        frozenset({OrderStatus.PENDING}),
        NEUTRAL,
    ),
    "payment.failed": EventRule(PAYMENT_ENTITY, OrderStatus.FAILED, _PAYABLE, FAILURE),
    "payment.captured.failed": EventRule(
        PAYMENT_ENTITY, OrderStatus.FAILED, _PAYABLE, FAILURE
    ),
}


# ---------------------------------------------------------------------------
# Parsed delivery
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderReference:
    """Where in the payload the order reference was found.

    ``entity.order_id`` / ``entity.id`` carry the gateway's own order id;
    every other source carries our internal order id.
    """

    value: str
    source: str

    @property
    def is_gateway_order_id(self) -> bool:
        return self.source in ("entity.order_id", "entity.id")


def _as_dict(value: Any) -> Dict[str, Any]:
    # The gateway sends an empty list for entities/notes without values.
    return value if isinstance(value, dict) else {}


def parse_order_reference(entity: Dict[str, Any], kind: str) -> Optional[OrderReference]:
    """Extract the order reference from an event entity.

    Precedence: ``notes.orderId``, the entity's gateway order id,
    ``notes.order_id``, ``metadata.orderId``.
    """
    notes = _as_dict(entity.get("notes"))
    metadata = _as_dict(entity.get("metadata"))
    if kind == ORDER_ENTITY:
        gateway_order = ("entity.id", entity.get("id"))
    else:
        gateway_order = ("entity.order_id", entity.get("order_id"))

    candidates = (
        ("notes.orderId", notes.get("orderId")),
        gateway_order,
        ("notes.order_id", notes.get("order_id")),
        ("metadata.orderId", metadata.get("orderId")),
    )
    for source, value in candidates:
        if value:
            return OrderReference(value=str(value), source=source)
    return None


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class WebhookEvent:
    event: str
    webhook_id: str
    payment: Dict[str, Any] = field(default_factory=dict)
    order: Dict[str, Any] = field(default_factory=dict)

    @property
    def payment_id(self) -> str:
        return self.payment.get("id") or ""

    @property
    def gateway_order_id(self) -> str:
        return self.order.get("id") or self.payment.get("order_id") or ""

    @property
    def gateway_reference(self) -> str:
        """Idempotency key: the payment id, else the gateway order id."""
        return self.payment_id or self.order.get("id") or self.webhook_id

    def entity(self, kind: str) -> Dict[str, Any]:
        return self.order if kind == ORDER_ENTITY else self.payment


@dataclass(frozen=True)
class ReconciliationResult:
    processed: bool
    message: str
    success: bool = True
    idempotent: bool = False
    reason: str = ""
    current_status: Optional[str] = None
    order_id: Optional[str] = None

    def as_response(self, webhook_id: str, event: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "webhookId": webhook_id,
            "event": event,
            "processed": self.processed,
        }
        if self.idempotent:
            body["idempotent"] = True
        if self.reason:
            body["reason"] = self.reason
        if self.current_status:
            body["current_status"] = self.current_status
        if self.order_id:
            body["orderId"] = self.order_id
        return body


def _rejected(reason: str, **kwargs: Any) -> ReconciliationResult:
    return ReconciliationResult(
        processed=False, message="Webhook received", reason=reason, **kwargs
    )


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class WebhookReconciler:
    def __init__(
        self,
        order_repository: IOrderRepository,
        coupon_service: CouponService,
        cart_service: CartService,
        payment_gateway: IPaymentGateway,
        webhook_secret: str,
    ) -> None:
        self._order_repo = order_repository
        self._coupons = coupon_service
        self._cart = cart_service
        self._gateway = payment_gateway
        self._secret = webhook_secret
        self._state_machine = OrderStateMachine(order_repository)

    def parse(
        self, raw_body: bytes, signature: Optional[str], webhook_id: str
    ) -> WebhookEvent:
        """Authenticate and decode a delivery.

        Raises:
            InvalidWebhook: unconfigured secret, missing or invalid
                signature, malformed JSON, or no ``event``/``payload``.
        """
        log = logger.bind(webhook_id=webhook_id)
        if not self._secret:
            log.error("webhook.secret_not_configured")
            raise InvalidWebhook("Webhook secret not configured")
        if not signature:
            log.warning("webhook.signature_missing")
            raise InvalidWebhook("Missing webhook signature")
        if not self._gateway.verify_webhook_signature(raw_body, signature, self._secret):
            log.warning("webhook.signature_invalid")
            raise InvalidWebhook("Invalid webhook signature")

        try:
            body = json.loads(raw_body)
        except ValueError as exc:
            log.warning("webhook.invalid_json")
            raise InvalidWebhook("Invalid JSON payload") from exc

        if not isinstance(body, dict) or not body.get("event") or not isinstance(
            body.get("payload"), dict
        ):
            log.warning("webhook.missing_fields")
            raise InvalidWebhook("Missing event or payload")

        payload = body["payload"]
        return WebhookEvent(
            event=str(body["event"]),
            webhook_id=webhook_id,
            payment=_as_dict(_as_dict(payload.get("payment")).get("entity")),
            order=_as_dict(_as_dict(payload.get("order")).get("entity")),
        )

    def reconcile(self, event: WebhookEvent) -> ReconciliationResult:
        log = logger.bind(
            webhook_id=event.webhook_id,
            event=event.event,
            payment_id=event.payment_id,
            gateway_order_id=event.gateway_order_id,
        )
        rule = EVENT_RULES.get(event.event)
        if rule is None:
            log.info("webhook.event_ignored")
            return _rejected(f"Unhandled event type: {event.event}")

        reference = parse_order_reference(event.entity(rule.entity), rule.entity)
        if reference is None:
            log.warning("webhook.order_reference_missing")
            return _rejected("Order ID not found in webhook payload")
        if not reference.is_gateway_order_id and not _is_uuid(reference.value):
            log.warning("webhook.invalid_order_id", order_ref=reference.value)
            return _rejected("Invalid order ID format")

        log = log.bind(order_ref=reference.value, order_ref_source=reference.source)
        try:
            with transaction.atomic():
                return self._apply(event, rule, reference, log)
        except Exception:
            log.critical("webhook.processing_failed", exc_info=True)
            return ReconciliationResult(
                success=False,
                processed=False,
                message="Webhook processing failed",
            )

    def _apply(
        self,
        event: WebhookEvent,
        rule: EventRule,
        reference: OrderReference,
        log: Any,
    ) -> ReconciliationResult:
        if reference.is_gateway_order_id:
            order = self._order_repo.get_for_update_by_gateway_order_id(reference.value)
        else:
            order = self._order_repo.get_for_update(reference.value)
        if order is None:
            log.warning("webhook.order_not_found")
            return _rejected("Order not found")

        order_id = str(order.id)
        gateway_reference = event.gateway_reference
        if self._order_repo.has_payment_event(order, gateway_reference, rule.target):
            log.info("webhook.already_processed", order_id=order_id)
            return ReconciliationResult(
                processed=True,
                idempotent=True,
                message="Event already processed",
                order_id=order_id,
            )

        if order.order_status not in rule.sources:
            log.info(
                "webhook.invalid_order_state",
                order_id=order_id,
                current_status=order.order_status,
            )
            return _rejected(
                f"Order not in valid state: {order.order_status}",
                current_status=order.order_status,
                order_id=order_id,
            )

        if event.event == "payment.captured":
            amount = from_minor_units(event.payment.get("amount") or 0)
            if abs(amount - order.order_total) > settings.PAYMENT_AMOUNT_TOLERANCE:
                log.warning(
                    "webhook.amount_mismatch",
                    order_id=order_id,
                    paid=str(amount),
                    expected=str(order.order_total),
                )
                return _rejected("Payment amount mismatch", order_id=order_id)

        if not self._order_repo.record_payment_event(
            order, gateway_reference, rule.target, event.event
        ):
            return ReconciliationResult(
                processed=True,
                idempotent=True,
                message="Event already processed",
                order_id=order_id,
            )

        self._state_machine.transition(
            order,
            rule.target,
            self._history_comment(event, rule),
            notify=rule.outcome != NEUTRAL,
        )

        if rule.outcome == SUCCESS:
            self._coupons.commit_usage(order)
            self._cart.clear(order.customer_id)
        elif rule.outcome == FAILURE:
            self._coupons.reverse_usage(
                order, "Coupon usage reversed due to payment failure"
            )
            order.add_domain_event(
                OrderPaymentFailed(
                    aggregate_id=order.id, reason=self._failure_reason(event)
                )
            )
            publish_after_commit(order)

        log.info("webhook.processed", order_id=order_id, new_status=rule.target)
        return ReconciliationResult(
            processed=True,
            message=f"Order marked as {rule.target}",
            order_id=order_id,
        )

    @staticmethod
    def _failure_reason(event: WebhookEvent) -> str:
        return event.payment.get("error_description") or "Payment failed"

    def _history_comment(self, event: WebhookEvent, rule: EventRule) -> str:
        if rule.outcome == SUCCESS:
            comment = (
                f"Payment confirmed via webhook ({event.event}). "
                f"Payment ID: {event.payment_id or '-'}"
            )
            if event.gateway_order_id:
                comment += f", Gateway order ID: {event.gateway_order_id}"
            return comment
        if rule.outcome == FAILURE:
            return (
                f"Payment failed via webhook ({event.event}). "
                f"Payment ID: {event.payment_id or '-'}. "
                f"Reason: {self._failure_reason(event)}"
            )
        return f"Payment authorized via webhook. Payment ID: {event.payment_id or '-'}"


def build_webhook_reconciler() -> WebhookReconciler:
    order_repository = OrderDjangoRepository()
    return WebhookReconciler(
        order_repository=order_repository,
        coupon_service=CouponService(CouponDjangoRepository(), order_repository),
        cart_service=CartService(),
        payment_gateway=get_payment_gateway(),
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
    )
