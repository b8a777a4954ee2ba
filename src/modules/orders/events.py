"""Domain events for the Orders bounded context."""

from __future__ import annotations

from dataclasses import dataclass

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderPaid(DomainEvent):
    """Raised once an order reaches ``paid`` from a customer-facing flow."""


@dataclass(frozen=True)
class OrderPaymentFailed(DomainEvent):
    """Raised when a payment attempt for an order fails."""

    reason: str = ""


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    """Raised when the customer abandons checkout."""
