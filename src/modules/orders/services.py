"""Checkout service layer (Use Cases).

Drives an order from the customer's cart to ``paid``:

1. ``start_checkout`` snapshots the cart into a ``pending`` order.
2. ``create_payment_order`` opens a gateway order for the order total (or
   completes the order on the spot when nothing is left to pay).
3. ``complete_checkout`` verifies the gateway callback and marks the order
   paid; the webhook reconciler may get there first, in which case the
   processed-payment ledger makes this a no-op.

Cancellation, payment failure and retry are the other customer-driven
transitions.  Every mutation runs with the order row locked; gateway calls
are made outside of row locks.  Notification emails are triggered by
domain events published after commit.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Optional
from uuid import UUID

import structlog
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from modules.orders.constants import (
    CHECKOUT_CANCELLED_COMMENT,
    CHECKOUT_INITIATED_COMMENT,
    DEFAULT_PAYMENT_FAILED_REASON,
    RETRY_ATTEMPT_COMMENT,
    RETRY_ATTEMPT_MARKER,
    RETRY_FAILED_COMMENT,
    OrderSource,
    OrderStatus,
    OrderTotalCode,
    PaymentMethod,
)
from modules.orders.dtos import (
    CheckoutCompletionDTO,
    CheckoutLineDTO,
    CheckoutOptionDTO,
    CheckoutStatusDTO,
    PaymentOrderDTO,
)
from modules.orders.events import OrderCancelled, OrderPaid, OrderPaymentFailed
from modules.orders.exceptions import (
    DuplicatePurchase,
    EmptyCart,
    InvalidCartItem,
    InvalidOrderStatus,
    OrderTooOldToRetry,
    RetryRateLimited,
)
from modules.orders.guards import get_owned_order
from modules.orders.state_machine import OrderStateMachine
from modules.payments.exceptions import (
    GatewayError,
    InvalidPaymentSignature,
    PaymentAmountMismatch,
    PaymentNotCaptured,
    PaymentOrderMismatch,
)
from shared.infrastructure.bus import event_bus

if TYPE_CHECKING:
    from modules.cart.models import CartItem
    from modules.cart.services import CartService
    from modules.coupons.services import CouponService
    from modules.customers.models import Customer
    from modules.orders.dtos import RequestProvenanceDTO
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.payments.gateway import GatewayOrder, IPaymentGateway

logger = structlog.get_logger(__name__)


def publish_after_commit(order: Order) -> None:
    """Hand the order's pending domain events to the bus once the transaction commits."""
    for event in order.pull_domain_events():
        transaction.on_commit(lambda event=event: event_bus.publish(event))


class CheckoutService:
    """Application service for the checkout use-cases.

    Receives its collaborators via constructor injection (DIP).
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        coupon_service: CouponService,
        cart_service: CartService,
        payment_gateway: IPaymentGateway,
    ) -> None:
        self._order_repo = order_repository
        self._coupons = coupon_service
        self._cart = cart_service
        self._gateway = payment_gateway
        self._state_machine = OrderStateMachine(order_repository)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @transaction.atomic
    def start_checkout(
        self, customer: Customer, provenance: RequestProvenanceDTO
    ) -> Order:
        """Create a pending order from the customer's cart.

        Raises:
            EmptyCart: the cart has no items.
            InvalidCartItem: an item points to a missing/inactive product,
                has no options, or options of another product.
        """
        log = logger.bind(customer_id=str(customer.id))
        items = self._cart.get_items(customer.id)
        if not items:
            log.info("checkout.empty_cart")
            raise EmptyCart()

        lines = [self._to_checkout_line(item) for item in items]
        order = self._order_repo.create(customer.id, lines, provenance)
        self._order_repo.add_history(
            order, OrderStatus.PENDING, CHECKOUT_INITIATED_COMMENT
        )

        log.info(
            "checkout.started",
            order_id=str(order.id),
            order_number=order.order_number,
            order_total=str(order.order_total),
        )
        return self._order_repo.get_by_id(str(order.id)) or order

    def create_payment_order(
        self, order_id: UUID, customer: Customer, source: Optional[str] = None
    ) -> PaymentOrderDTO:
        """Open a gateway order for a pending order.

        Orders with nothing left to pay are completed immediately and the
        result says ``payment_required=False``.

        Raises:
            OrderNotFound / NotOrderOwner: order lookup failed.
            InvalidOrderStatus: the order is not pending.
            DuplicatePurchase: some options were already bought.
            GatewayError: the gateway order could not be created.
        """
        log = logger.bind(order_id=str(order_id), customer_id=str(customer.id))

        with transaction.atomic():
            order = get_owned_order(
                self._order_repo, order_id, customer, for_update=True
            )
            self._require_status(order, OrderStatus.PENDING)
            self._reject_duplicate_purchase(order, customer)

            if order.order_total <= 0:
                self._complete_without_payment(order)
                log.info("checkout.completed_without_payment")
                return self._payment_order(order, customer)

        gateway_order = self._gateway.create_order(
            order.order_total, settings.PAYMENT_CURRENCY, reference=str(order.id)
        )

        with transaction.atomic():
            order = self._order_repo.get_for_update(str(order.id))
            self._require_status(order, OrderStatus.PENDING)
            order.gateway_order_id = gateway_order.id
            update_fields = ["gateway_order_id"]
            if source in OrderSource.values:
                order.source = source
                update_fields.append("source")
            order.save(update_fields=update_fields)

        log.info(
            "checkout.payment_order_created",
            gateway_order_id=gateway_order.id,
            amount=str(order.order_total),
        )
        return self._payment_order(order, customer, gateway_order)

    def complete_checkout(
        self,
        order_id: UUID,
        customer: Customer,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
    ) -> CheckoutCompletionDTO:
        """Confirm a payment reported by the checkout form.

        Idempotent per payment id: a payment already applied to the order
        (here or by the webhook) returns the order unchanged.

        Raises:
            InvalidPaymentSignature: the callback signature does not verify.
            PaymentNotCaptured: the gateway has not captured the payment.
            PaymentOrderMismatch: the payment or the submitted gateway order
                is not the one opened for this order.
            OrderNotFound / NotOrderOwner: order lookup failed.
            PaymentAmountMismatch: captured amount differs from the total.
            InvalidOrderStatus: the order can no longer be paid.
        """
        log = logger.bind(order_id=str(order_id), payment_id=payment_id)

        if not self._gateway.verify_payment_signature(
            gateway_order_id, payment_id, signature
        ):
            log.warning("checkout.invalid_signature")
            raise InvalidPaymentSignature()

        payment = self._gateway.fetch_payment(payment_id)
        if not payment.is_captured:
            log.warning("checkout.payment_not_captured", payment_status=payment.status)
            raise PaymentNotCaptured(
                f"Payment not captured. Current status: {payment.status}"
            )
        if payment.order_id != gateway_order_id:
            log.warning(
                "checkout.payment_order_mismatch",
                gateway_order_id=gateway_order_id,
                payment_order_id=payment.order_id,
            )
            raise PaymentOrderMismatch()

        with transaction.atomic():
            order = get_owned_order(
                self._order_repo, order_id, customer, for_update=True
            )
            if order.gateway_order_id != gateway_order_id:
                log.warning(
                    "checkout.payment_order_mismatch",
                    gateway_order_id=gateway_order_id,
                    expected=order.gateway_order_id,
                )
                raise PaymentOrderMismatch()
            if self._order_repo.has_payment_event(order, payment_id, OrderStatus.PAID):
                log.info("checkout.already_processed")
                return self._completion(order, payment_id, already_processed=True)

            if abs(payment.amount - order.order_total) > settings.PAYMENT_AMOUNT_TOLERANCE:
                log.warning(
                    "checkout.amount_mismatch",
                    paid=str(payment.amount),
                    expected=str(order.order_total),
                )
                raise PaymentAmountMismatch()

            self._state_machine.transition(
                order,
                OrderStatus.PAID,
                f"Payment completed successfully. Payment ID: {payment_id}",
                notify=True,
            )
            self._order_repo.record_payment_event(
                order, payment_id, OrderStatus.PAID, "checkout.verify"
            )
            self._coupons.commit_usage(order)
            self._cart.clear(order.customer_id)
            order.add_domain_event(OrderPaid(aggregate_id=order.id))
            publish_after_commit(order)

        log.info("checkout.completed", order_total=str(order.order_total))
        return self._completion(order, payment_id)

    @transaction.atomic
    def cancel_checkout(self, order_id: UUID, customer: Customer) -> Order:
        """Abandon a pending order, releasing its coupon."""
        order = get_owned_order(self._order_repo, order_id, customer, for_update=True)
        self._require_status(order, OrderStatus.PENDING)

        self._state_machine.transition(
            order, OrderStatus.CANCELLED, CHECKOUT_CANCELLED_COMMENT
        )
        self._coupons.reverse_usage(
            order, "Coupon usage reversed due to checkout cancellation"
        )
        order.add_domain_event(OrderCancelled(aggregate_id=order.id))
        publish_after_commit(order)

        logger.info("checkout.cancelled", order_id=str(order.id))
        return self._order_repo.get_by_id(str(order.id)) or order

    @transaction.atomic
    def mark_payment_failed(
        self, order_id: UUID, customer: Customer, reason: str = ""
    ) -> Order:
        """Record a payment failure reported by the client."""
        reason = reason or DEFAULT_PAYMENT_FAILED_REASON
        order = get_owned_order(self._order_repo, order_id, customer, for_update=True)
        self._require_status(order, OrderStatus.PENDING)

        self._state_machine.transition(
            order, OrderStatus.FAILED, f"Payment failed: {reason}", notify=True
        )
        self._coupons.reverse_usage(order, "Coupon usage reversed due to payment failure")
        order.add_domain_event(OrderPaymentFailed(aggregate_id=order.id, reason=reason))
        publish_after_commit(order)

        logger.info("checkout.payment_failed", order_id=str(order.id), reason=reason)
        return self._order_repo.get_by_id(str(order.id)) or order

    def retry_payment(self, order_id: UUID, customer: Customer) -> PaymentOrderDTO:
        """Put a failed order back to pending with a fresh gateway order.

        The status change is committed before the gateway is called; if the
        gateway fails the order is moved back to ``failed``.

        Raises:
            InvalidOrderStatus: the order is not failed.
            OrderTooOldToRetry: the order is past the retry window.
            RetryRateLimited: a retry was attempted moments ago.
            GatewayError: the new gateway order could not be created.
        """
        log = logger.bind(order_id=str(order_id), customer_id=str(customer.id))
        now = timezone.now()

        with transaction.atomic():
            order = get_owned_order(
                self._order_repo, order_id, customer, for_update=True
            )
            self._require_status(order, OrderStatus.FAILED)

            max_age = timedelta(hours=settings.RETRY_PAYMENT_MAX_AGE_HOURS)
            if now - order.created_at >= max_age:
                log.info("checkout.retry_too_old")
                raise OrderTooOldToRetry()

            cooldown = timedelta(minutes=settings.RETRY_PAYMENT_COOLDOWN_MINUTES)
            if self._order_repo.has_history_since(
                order, RETRY_ATTEMPT_MARKER, now - cooldown
            ):
                log.info("checkout.retry_rate_limited")
                raise RetryRateLimited()

            self._state_machine.transition(
                order, OrderStatus.PENDING, RETRY_ATTEMPT_COMMENT
            )
            if order.order_total <= 0:
                self._complete_without_payment(order)
                return self._payment_order(order, customer)

        try:
            gateway_order = self._gateway.create_order(
                order.order_total, settings.PAYMENT_CURRENCY, reference=str(order.id)
            )
        except GatewayError:
            with transaction.atomic():
                order = self._order_repo.get_for_update(str(order.id))
                if order.order_status == OrderStatus.PENDING:
                    self._state_machine.transition(
                        order, OrderStatus.FAILED, RETRY_FAILED_COMMENT
                    )
            log.error("checkout.retry_gateway_failed")
            raise

        with transaction.atomic():
            order = self._order_repo.get_for_update(str(order.id))
            order.gateway_order_id = gateway_order.id
            order.save(update_fields=["gateway_order_id"])

        log.info("checkout.retry_started", gateway_order_id=gateway_order.id)
        return self._payment_order(order, customer, gateway_order)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self, order_id: UUID, customer: Customer) -> CheckoutStatusDTO:
        order = get_owned_order(self._order_repo, order_id, customer)
        subtotal = order.get_total(OrderTotalCode.SUBTOTAL)
        if subtotal is None:
            subtotal = order.compute_subtotal()
        discount = order.get_total(OrderTotalCode.COUPON_DISCOUNT) or Decimal("0.00")
        return CheckoutStatusDTO(
            order_id=order.id,
            order_number=order.order_number,
            order_status=order.order_status,
            order_total=order.order_total,
            subtotal=subtotal,
            discount=discount,
            coupon_code=order.coupon.code if order.coupon_id else None,
            payment_method=order.payment_method,
            gateway_order_id=order.gateway_order_id or None,
            created_at=order.created_at,
        )

    def list_orders(self, customer: Customer):
        return self._order_repo.list_for_customer(customer.id)

    def get_order(self, order_id: UUID, customer: Customer) -> Order:
        return get_owned_order(self._order_repo, order_id, customer)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_checkout_line(item: CartItem) -> CheckoutLineDTO:
        product = item.product
        if product is None or not product.is_active:
            raise InvalidCartItem("A product in your cart is no longer available.")

        options = list(item.options.all())
        if not options:
            raise InvalidCartItem(f"Select at least one option for {product.name}.")
        if any(option.product_id != product.id for option in options):
            raise InvalidCartItem(f"Invalid option selected for {product.name}.")

        return CheckoutLineDTO(
            product_id=product.id,
            product_name=product.name,
            options=[
                CheckoutOptionDTO(option_id=option.id, name=option.name, price=option.price)
                for option in options
            ],
        )

    @staticmethod
    def _require_status(order: Order, status: str) -> None:
        if order.order_status != status:
            raise InvalidOrderStatus(
                f"Order must be {status} for this operation "
                f"(current status: {order.order_status})."
            )

    def _reject_duplicate_purchase(self, order: Order, customer: Customer) -> None:
        owned = self._order_repo.find_purchased_options(
            customer.id, order.option_pairs()
        )
        if owned:
            logger.info(
                "checkout.duplicate_purchase",
                order_id=str(order.id),
                options=sorted(str(option_id) for _, option_id in owned),
            )
            raise DuplicatePurchase()

    def _complete_without_payment(self, order: Order) -> None:
        """Mark a zero-total order paid (free items or a coupon covering it all)."""
        covered_by_coupon = order.coupon_id is not None
        order.payment_method = (
            PaymentMethod.COUPON if covered_by_coupon else PaymentMethod.FREE
        )
        order.payment_code = PaymentMethod.FREE
        order.save(update_fields=["payment_method", "payment_code"])

        comment = (
            "Order completed - coupon covers the full amount"
            if covered_by_coupon
            else "Free order completed"
        )
        self._state_machine.transition(order, OrderStatus.PAID, comment, notify=True)
        self._coupons.commit_usage(order)
        self._cart.clear(order.customer_id)
        order.add_domain_event(OrderPaid(aggregate_id=order.id))
        publish_after_commit(order)

    def _payment_order(
        self,
        order: Order,
        customer: Customer,
        gateway_order: Optional[GatewayOrder] = None,
    ) -> PaymentOrderDTO:
        return PaymentOrderDTO(
            order_id=order.id,
            order_number=order.order_number,
            order_status=order.order_status,
            payment_required=gateway_order is not None,
            amount=order.order_total,
            currency=settings.PAYMENT_CURRENCY,
            gateway_order_id=gateway_order.id if gateway_order else None,
            key_id=self._gateway.key_id if gateway_order else None,
            customer_name=customer.full_name,
            customer_email=customer.email,
            customer_contact=customer.mobile,
        )

    @staticmethod
    def _completion(
        order: Order, payment_id: str, already_processed: bool = False
    ) -> CheckoutCompletionDTO:
        return CheckoutCompletionDTO(
            order_id=order.id,
            order_number=order.order_number,
            order_status=order.order_status,
            order_total=order.order_total,
            payment_id=payment_id,
            already_processed=already_processed,
        )
