"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.  They are the
contracts between the API layer (DRF serializers/views) and the checkout
service.  DTOs are immutable (``frozen=True``).

- ``RequestProvenanceDTO``: where a checkout request came from.
- ``CheckoutOptionDTO`` / ``CheckoutLineDTO``: validated cart lines.
- ``PaymentOrderDTO``: result of creating the payment order.
- ``CheckoutCompletionDTO``: result of a payment confirmation.
- ``CheckoutStatusDTO``: read model for the checkout status page.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from modules.orders.constants import OrderSource

# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class RequestProvenanceDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    ip_address: Optional[str] = None
    forwarded_ip: str = ""
    user_agent: str = ""
    accept_language: str = ""
    source: str = OrderSource.WEB

    @field_validator("user_agent", "accept_language")
    @classmethod
    def truncate_headers(cls, v: str) -> str:
        return v[:255] if v else ""

    @field_validator("source")
    @classmethod
    def unknown_source_defaults_to_web(cls, v: str) -> str:
        return v if v in OrderSource.values else OrderSource.WEB


class CheckoutOptionDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    option_id: UUID
    name: str
    price: Decimal


class CheckoutLineDTO(BaseModel):
    """One cart item after validation: a product and its chosen options."""

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    product_name: str
    options: List[CheckoutOptionDTO]

    @field_validator("options")
    @classmethod
    def options_must_not_be_empty(
        cls, v: List[CheckoutOptionDTO]
    ) -> List[CheckoutOptionDTO]:
        if not v:
            raise ValueError("A checkout line needs at least one option.")
        return v


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class PaymentOrderDTO(BaseModel):
    """What the client needs to open the gateway checkout form.

    ``payment_required`` is ``False`` when the order was completed without
    payment (free items, or a coupon covering the whole total).
    """

    model_config = ConfigDict(frozen=True)

    order_id: UUID
    order_number: str
    order_status: str
    payment_required: bool
    amount: Decimal
    currency: str
    gateway_order_id: Optional[str] = None
    key_id: Optional[str] = None
    customer_name: str = ""
    customer_email: str = ""
    customer_contact: str = ""


class CheckoutCompletionDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: UUID
    order_number: str
    order_status: str
    order_total: Decimal
    payment_id: str
    already_processed: bool = False


class CheckoutStatusDTO(BaseModel):
    """Order status as shown on the checkout page, with the coupon effect."""

    model_config = ConfigDict(frozen=True)

    order_id: UUID
    order_number: str
    order_status: str
    order_total: Decimal
    subtotal: Decimal
    discount: Decimal = Decimal("0.00")
    coupon_code: Optional[str] = None
    payment_method: str
    gateway_order_id: Optional[str] = None
    created_at: datetime
