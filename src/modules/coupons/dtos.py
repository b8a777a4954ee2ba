"""Coupon DTOs (Pydantic v2, immutable).

Input DTOs validate admin coupon definitions; output DTOs describe the
effect of a coupon on an order.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from modules.coupons.models import CouponType

CODE_MAX_LENGTH = 50


def normalize_code(value: str) -> str:
    return (value or "").strip().upper()


# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class CouponDefinitionDTO(BaseModel):
    """Full coupon definition for creation.

    Validates the invariants that need only the definition itself; limits
    that depend on recorded usage are checked by the service on update.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, max_length=128)
    code: str
    type: str = CouponType.PERCENTAGE
    discount: Decimal = Field(ge=0)
    logged: bool = False
    min_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    max_discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    date_start: Optional[datetime] = None
    date_end: Optional[datetime] = None
    total_uses: int = Field(default=1, ge=0)
    customer_uses: int = Field(default=1, ge=0)
    auto_apply: bool = False
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def code_is_normalized(cls, v: str) -> str:
        code = normalize_code(v)
        if not code or len(code) > CODE_MAX_LENGTH:
            raise ValueError(f"Coupon code must be 1-{CODE_MAX_LENGTH} characters.")
        return code

    @field_validator("type")
    @classmethod
    def type_is_known(cls, v: str) -> str:
        if v not in CouponType.values:
            raise ValueError("Coupon type must be 'F' (fixed) or 'P' (percentage).")
        return v

    @model_validator(mode="after")
    def check_invariants(self):
        check_coupon_invariants(
            coupon_type=self.type,
            discount=self.discount,
            min_amount=self.min_amount,
            date_start=self.date_start,
            date_end=self.date_end,
            total_uses=self.total_uses,
            customer_uses=self.customer_uses,
        )
        return self


class CouponUpdateDTO(BaseModel):
    """Partial update: only the fields that were sent are set."""

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    code: Optional[str] = None
    type: Optional[str] = None
    discount: Optional[Decimal] = Field(default=None, ge=0)
    logged: Optional[bool] = None
    min_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_discount: Optional[Decimal] = Field(default=None, ge=0)
    date_start: Optional[datetime] = None
    date_end: Optional[datetime] = None
    total_uses: Optional[int] = Field(default=None, ge=0)
    customer_uses: Optional[int] = Field(default=None, ge=0)
    auto_apply: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def code_is_normalized(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        code = normalize_code(v)
        if not code or len(code) > CODE_MAX_LENGTH:
            raise ValueError(f"Coupon code must be 1-{CODE_MAX_LENGTH} characters.")
        return code

    @field_validator("type")
    @classmethod
    def type_is_known(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in CouponType.values:
            raise ValueError("Coupon type must be 'F' (fixed) or 'P' (percentage).")
        return v

    def changes(self) -> Dict[str, object]:
        return self.model_dump(exclude_unset=True)


def check_coupon_invariants(
    *,
    coupon_type: str,
    discount: Decimal,
    min_amount: Decimal,
    date_start: Optional[datetime],
    date_end: Optional[datetime],
    total_uses: int,
    customer_uses: int,
) -> None:
    """Raise ``ValueError`` when a coupon definition breaks a stored invariant."""
    if coupon_type == CouponType.PERCENTAGE and not (0 < discount <= 100):
        raise ValueError("Percentage discount must be between 0 and 100.")
    if coupon_type == CouponType.FIXED and discount > min_amount:
        raise ValueError(
            "Fixed discount amount cannot be greater than the minimum order amount."
        )
    if date_start and date_end and date_end <= date_start:
        raise ValueError("End date must be after start date.")
    if total_uses and customer_uses and customer_uses > total_uses:
        raise ValueError("Uses per customer cannot exceed total uses.")


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class CouponCalculationDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    original_total: Decimal
    discount_amount: Decimal
    final_total: Decimal


class CouponSummaryDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    code: str
    name: str
    type: str
    discount: Decimal


class AppliedCouponDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: UUID
    coupon: CouponSummaryDTO
    calculation: CouponCalculationDTO


class AutoApplyResultDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    applied: bool
    reason: str = ""
    coupon: Optional[CouponSummaryDTO] = None
    calculation: Optional[CouponCalculationDTO] = None


class CouponUsageStatsDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    coupon_id: UUID
    code: str
    total_uses: int
    total_discount: Decimal
    remaining_uses: Optional[int]
    uses_by_customer: Dict[str, int]
