"""Order repository interface.

Extends ``IRepository[Order]`` with what the order aggregate needs:
creation from checked-out lines, history, totals, the duplicate-purchase
query and the processed-payment ledger.

The Service Layer depends exclusively on this contract (DIP).
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Optional, Set, Tuple
from uuid import UUID

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from modules.orders.dtos import CheckoutLineDTO, RequestProvenanceDTO
    from modules.orders.models import Order, OrderHistory


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root."""

    @abstractmethod
    def create(
        self,
        customer_id: UUID,
        lines: Iterable[CheckoutLineDTO],
        provenance: RequestProvenanceDTO,
    ) -> Order:
        """Create a pending order with its lines and a ``[subtotal, total]`` breakdown."""

    @abstractmethod
    def get_for_update_by_gateway_order_id(
        self, gateway_order_id: str
    ) -> Optional[Order]:
        """Row-locked order carrying *gateway_order_id*."""

    @abstractmethod
    def list_for_customer(self, customer_id: UUID) -> QuerySet:
        """Orders of one customer, newest first."""

    @abstractmethod
    def add_history(
        self, order: Order, status: str, comment: str, notify: bool = False
    ) -> OrderHistory:
        """Append a history entry."""

    @abstractmethod
    def replace_totals(
        self, order: Order, subtotal: Decimal, discount: Optional[Decimal] = None
    ) -> Order:
        """Rewrite the totals breakdown and ``order_total`` together."""

    @abstractmethod
    def find_purchased_options(
        self, customer_id: UUID, pairs: Set[Tuple[UUID, UUID]]
    ) -> Set[Tuple[UUID, UUID]]:
        """Return which ``(product_id, option_id)`` pairs the customer already paid for."""

    @abstractmethod
    def has_history_since(self, order: Order, marker: str, since: datetime) -> bool:
        """Whether a history comment containing *marker* was written after *since*."""

    @abstractmethod
    def has_payment_event(self, order: Order, reference: str, status: str) -> bool:
        """Whether *reference* was already applied to the order for *status*."""

    @abstractmethod
    def record_payment_event(
        self, order: Order, reference: str, status: str, event_type: str
    ) -> bool:
        """Insert a ledger row; ``False`` when it already existed."""
