"""Coupon service layer: applying coupons to orders and the usage ledger.

Applying a coupon only rewrites the order's totals; the redemption itself
(``CouponUsage``) is written when the order is paid (``commit_usage``) and
removed again when the order is cancelled or its payment fails
(``reverse_usage``).  Usage limits are checked at apply time against the
ledger.

All order mutations run with the order row locked.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Optional
from uuid import UUID

import structlog
from django.db import IntegrityError, transaction
from django.utils import timezone

from modules.core.exceptions import ValidationFailed
from modules.coupons.dtos import (
    CODE_MAX_LENGTH,
    AppliedCouponDTO,
    AutoApplyResultDTO,
    CouponCalculationDTO,
    CouponDefinitionDTO,
    CouponSummaryDTO,
    CouponUpdateDTO,
    CouponUsageStatsDTO,
    check_coupon_invariants,
    normalize_code,
)
from modules.coupons.exceptions import (
    CouponAlreadyApplied,
    CouponCodeExists,
    CouponNotApplicable,
    CouponNotFound,
    InvalidCoupon,
    InvalidOrderSubtotal,
)
from modules.coupons.models import Coupon, CouponUsage
from modules.orders.constants import OrderStatus, OrderTotalCode
from modules.orders.exceptions import InvalidOrderStatus
from modules.orders.guards import get_owned_order
from modules.orders.state_machine import OrderStateMachine

if TYPE_CHECKING:
    from modules.coupons.repositories.interfaces import (
        CouponUsageCounts,
        ICouponRepository,
    )
    from modules.customers.models import Customer
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)

NO_AUTO_APPLY_COUPON = "No auto-apply coupon available"
COUPON_ALREADY_APPLIED = "Coupon already applied"

_DEFINITION_FIELDS = (
    "type",
    "discount",
    "min_amount",
    "date_start",
    "date_end",
    "total_uses",
    "customer_uses",
)


def _summary(coupon: Coupon) -> CouponSummaryDTO:
    return CouponSummaryDTO(
        id=coupon.id,
        code=coupon.code,
        name=coupon.name,
        type=coupon.type,
        discount=coupon.discount,
    )


class CouponService:
    """Application service for coupon use-cases.

    Receives repositories via constructor injection (DIP).
    """

    def __init__(
        self,
        coupon_repository: ICouponRepository,
        order_repository: IOrderRepository,
    ) -> None:
        self._coupon_repo = coupon_repository
        self._order_repo = order_repository
        self._state_machine = OrderStateMachine(order_repository)

    # ------------------------------------------------------------------
    # Customer-facing
    # ------------------------------------------------------------------

    @transaction.atomic
    def apply(self, order_id: UUID, customer: Customer, code: str) -> AppliedCouponDTO:
        """Apply the coupon *code* to a pending order owned by *customer*.

        Raises:
            ValidationFailed: malformed code.
            OrderNotFound / NotOrderOwner: order lookup failed.
            InvalidOrderStatus: the order is not pending.
            CouponNotFound: no active coupon with that code.
            CouponAlreadyApplied: the order already carries a coupon.
            InvalidOrderSubtotal: the order is worth nothing.
            CouponNotApplicable: minimum amount or usage limits not met.
        """
        code = normalize_code(code)
        if not code or len(code) > CODE_MAX_LENGTH:
            raise ValidationFailed(
                f"Coupon code must be 1-{CODE_MAX_LENGTH} characters."
            )

        order = get_owned_order(self._order_repo, order_id, customer, for_update=True)
        log = logger.bind(order_id=str(order.id), coupon_code=code)

        if order.order_status != OrderStatus.PENDING:
            raise InvalidOrderStatus("Coupons can only be applied to pending orders.")

        coupon = self._coupon_repo.get_active_by_code(code, timezone.now())
        if coupon is None:
            log.info("coupon.not_found")
            raise CouponNotFound()

        counts = self._coupon_repo.usage_counts(coupon.id, customer.id, order.id)
        if order.coupon_id is not None or counts.by_order > 0:
            log.info("coupon.already_applied")
            raise CouponAlreadyApplied()

        subtotal = order.compute_subtotal()
        if subtotal <= 0:
            raise InvalidOrderSubtotal()

        reason = self._ineligibility_reason(coupon, subtotal, counts)
        if reason:
            log.info("coupon.not_applicable", reason=reason)
            raise CouponNotApplicable(reason)

        calculation = self._discount_order(order, coupon, subtotal)
        self._state_machine.note(
            order,
            f"Coupon applied: {coupon.code} - Discount: {calculation.discount_amount}",
        )
        log.info("coupon.applied", discount=str(calculation.discount_amount))
        return AppliedCouponDTO(
            order_id=order.id,
            coupon=_summary(coupon),
            calculation=calculation,
        )

    @transaction.atomic
    def auto_apply(self, order_id: UUID, customer: Customer) -> AutoApplyResultDTO:
        """Apply the store-wide auto-apply coupon when the order qualifies.

        Not qualifying is not an error: the result says ``applied=False``
        with a human-readable reason.
        """
        order = get_owned_order(self._order_repo, order_id, customer, for_update=True)
        log = logger.bind(order_id=str(order.id))

        if order.coupon_id is not None:
            subtotal = order.compute_subtotal()
            discount = order.get_total(OrderTotalCode.COUPON_DISCOUNT) or Decimal("0.00")
            return AutoApplyResultDTO(
                applied=True,
                reason=COUPON_ALREADY_APPLIED,
                coupon=_summary(order.coupon),
                calculation=CouponCalculationDTO(
                    original_total=subtotal,
                    discount_amount=discount,
                    final_total=order.order_total,
                ),
            )

        if order.order_status != OrderStatus.PENDING:
            raise InvalidOrderStatus("Coupons can only be applied to pending orders.")

        coupon = self._coupon_repo.get_auto_apply(timezone.now())
        if coupon is None:
            return AutoApplyResultDTO(applied=False, reason=NO_AUTO_APPLY_COUPON)

        subtotal = order.compute_subtotal()
        if subtotal <= 0:
            return AutoApplyResultDTO(
                applied=False, reason=InvalidOrderSubtotal.default_message
            )

        counts = self._coupon_repo.usage_counts(coupon.id, customer.id, order.id)
        reason = self._ineligibility_reason(coupon, subtotal, counts)
        if reason:
            log.info("coupon.auto_apply_skipped", coupon_code=coupon.code, reason=reason)
            return AutoApplyResultDTO(applied=False, reason=reason)

        calculation = self._discount_order(order, coupon, subtotal)
        self._state_machine.note(
            order,
            f"Auto-applied coupon: {coupon.code} - Discount: {calculation.discount_amount}",
        )
        log.info("coupon.auto_applied", coupon_code=coupon.code)
        return AutoApplyResultDTO(
            applied=True, coupon=_summary(coupon), calculation=calculation
        )

    # ------------------------------------------------------------------
    # Usage ledger (called while the order row is locked)
    # ------------------------------------------------------------------

    def commit_usage(self, order: Order) -> Optional[CouponUsage]:
        """Record the redemption of the order's coupon once it is paid.

        Idempotent: an existing redemption for the order is returned as is.
        """
        if order.coupon_id is None:
            return None

        existing = self._coupon_repo.get_usage_for_order(order.id)
        if existing is not None:
            return existing

        discount = order.get_total(OrderTotalCode.COUPON_DISCOUNT) or Decimal("0.00")
        usage = self._coupon_repo.create_usage(
            coupon_id=order.coupon_id,
            customer_id=order.customer_id,
            order_id=order.id,
            discount_amount=discount,
            order_total=order.order_total,
        )
        if usage is None:
            return self._coupon_repo.get_usage_for_order(order.id)

        self._state_machine.note(
            order,
            f"Coupon usage confirmed. Discount amount: {discount} applied to final payment.",
        )
        logger.info(
            "coupon.usage_committed",
            order_id=str(order.id),
            coupon_id=str(order.coupon_id),
            discount=str(discount),
        )
        return usage

    def reverse_usage(self, order: Order, comment: str = "") -> bool:
        """Undo a coupon on an order that will not be paid.

        Deletes the redemption (no-op when absent), detaches the coupon and
        restores the pre-discount totals.  Returns whether anything changed.
        """
        deleted = self._coupon_repo.delete_usage_for_order(order.id)
        if order.coupon_id is None:
            return deleted > 0

        coupon_id = order.coupon_id
        subtotal = order.compute_subtotal()
        order.coupon = None
        self._order_repo.replace_totals(order, subtotal, None)
        if comment:
            self._state_machine.note(order, comment)
        self._state_machine.note(
            order,
            f"Coupon removed and order total reset to original amount: {subtotal}",
        )
        logger.info(
            "coupon.usage_reversed",
            order_id=str(order.id),
            coupon_id=str(coupon_id),
            usage_deleted=deleted > 0,
        )
        return True

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    @transaction.atomic
    def create_coupon(self, dto: CouponDefinitionDTO) -> Coupon:
        if self._coupon_repo.code_exists(dto.code):
            raise CouponCodeExists()
        if dto.auto_apply:
            self._coupon_repo.unset_auto_apply()

        coupon = Coupon(**dto.model_dump(exclude_none=True))
        self._save_checked(coupon)
        logger.info("coupon.created", coupon_id=str(coupon.id), code=coupon.code)
        return coupon

    @transaction.atomic
    def update_coupon(self, coupon_id: UUID, dto: CouponUpdateDTO) -> Coupon:
        coupon = self._coupon_repo.get_for_update(str(coupon_id))
        if coupon is None:
            raise CouponNotFound("Coupon not found.")

        changes = dto.changes()
        if "code" in changes and self._coupon_repo.code_exists(
            changes["code"], exclude_id=coupon.id
        ):
            raise CouponCodeExists()

        merged = {name: changes.get(name, getattr(coupon, name)) for name in _DEFINITION_FIELDS}
        try:
            check_coupon_invariants(
                coupon_type=merged["type"],
                discount=merged["discount"],
                min_amount=merged["min_amount"],
                date_start=merged["date_start"],
                date_end=merged["date_end"],
                total_uses=merged["total_uses"],
                customer_uses=merged["customer_uses"],
            )
        except ValueError as exc:
            raise InvalidCoupon(str(exc)) from exc

        if changes.get("total_uses"):
            used, _, _ = self._coupon_repo.usage_breakdown(coupon.id)
            if changes["total_uses"] < used:
                raise InvalidCoupon(
                    f"Total uses cannot be lower than the {used} redemptions "
                    "already recorded."
                )
        if changes.get("customer_uses"):
            highest = self._coupon_repo.max_uses_by_one_customer(coupon.id)
            if changes["customer_uses"] < highest:
                raise InvalidCoupon(
                    "Uses per customer cannot be lower than a customer's "
                    f"recorded redemptions ({highest})."
                )

        if changes.get("auto_apply"):
            self._coupon_repo.unset_auto_apply(exclude_id=coupon.id)

        for name, value in changes.items():
            setattr(coupon, name, value)
        self._save_checked(coupon)
        logger.info(
            "coupon.updated", coupon_id=str(coupon.id), fields=sorted(changes)
        )
        return coupon

    def list_coupons(self):
        return self._coupon_repo.list_all()

    def get_coupon(self, coupon_id: UUID) -> Coupon:
        coupon = self._coupon_repo.get_by_id(str(coupon_id))
        if coupon is None:
            raise CouponNotFound("Coupon not found.")
        return coupon

    def usage_stats(self, coupon_id: UUID) -> CouponUsageStatsDTO:
        coupon = self.get_coupon(coupon_id)
        uses, total_discount, per_customer = self._coupon_repo.usage_breakdown(
            coupon.id
        )
        remaining = max(coupon.total_uses - uses, 0) if coupon.total_uses else None
        return CouponUsageStatsDTO(
            coupon_id=coupon.id,
            code=coupon.code,
            total_uses=uses,
            total_discount=total_discount,
            remaining_uses=remaining,
            uses_by_customer=per_customer,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _ineligibility_reason(
        coupon: Coupon, subtotal: Decimal, counts: CouponUsageCounts
    ) -> Optional[str]:
        reason = coupon.ineligibility_reason(subtotal)
        if reason:
            return reason
        if coupon.total_uses and counts.total >= coupon.total_uses:
            return "Coupon usage limit has been reached."
        if coupon.customer_uses and counts.by_customer >= coupon.customer_uses:
            return "You have already used this coupon the maximum number of times."
        return None

    def _discount_order(
        self, order: Order, coupon: Coupon, subtotal: Decimal
    ) -> CouponCalculationDTO:
        discount = coupon.calculate_discount(subtotal)
        order.coupon = coupon
        self._order_repo.replace_totals(order, subtotal, discount)
        return CouponCalculationDTO(
            original_total=subtotal,
            discount_amount=discount,
            final_total=order.order_total,
        )

    def _save_checked(self, coupon: Coupon) -> None:
        try:
            with transaction.atomic():
                self._coupon_repo.save(coupon)
        except IntegrityError as exc:
            if self._coupon_repo.code_exists(coupon.code, exclude_id=coupon.id):
                raise CouponCodeExists() from exc
            raise InvalidCoupon("Coupon conflicts with an existing coupon.") from exc
