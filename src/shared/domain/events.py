"""Domain event primitives shared by the bounded contexts."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import UUID

import uuid6


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    """Immutable fact about an aggregate, published after the transaction commits.

    ``event_id`` is a UUIDv7 so events sort by creation time.
    """

    aggregate_id: UUID
    event_id: UUID = field(default_factory=uuid6.uuid7)
    occurred_on: datetime = field(default_factory=_utcnow)

    @property
    def event_name(self) -> str:
        return type(self).__name__

    def log_fields(self) -> Dict[str, Any]:
        """Flat, JSON-friendly view of the event for structured logs."""
        fields = {key: str(value) for key, value in asdict(self).items()}
        fields["event_name"] = self.event_name
        return fields


class DomainEventMixin:
    """Lets an aggregate root queue events until its unit of work commits."""

    def _pending_events(self) -> List[DomainEvent]:
        events = self.__dict__.get("_domain_events")
        if events is None:
            events = self.__dict__["_domain_events"] = []
        return events

    def add_domain_event(self, event: DomainEvent) -> None:
        self._pending_events().append(event)

    def pull_domain_events(self) -> List[DomainEvent]:
        """Return the queued events and forget them."""
        events = list(self._pending_events())
        self._pending_events().clear()
        return events

    @property
    def domain_events(self) -> List[DomainEvent]:
        return list(self._pending_events())
