"""Process-local event bus."""

from __future__ import annotations

from typing import Dict, List, Type

import structlog

from shared.domain.bus import IEventBus, IEventHandler
from shared.domain.events import DomainEvent

logger = structlog.get_logger(__name__)


class InMemoryEventBus(IEventBus):
    """Dispatches an event to the handlers subscribed to its exact type.

    Handlers run synchronously in the publishing thread, in subscription
    order. A handler is registered at most once per event type.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Type[DomainEvent], List[IEventHandler]] = {}

    def subscribe(self, event_class: Type[DomainEvent], handler: IEventHandler) -> None:
        handlers = self._handlers.setdefault(event_class, [])
        if handler not in handlers:
            handlers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        handlers = self._handlers.get(type(event), [])
        logger.info("event.published", handlers=len(handlers), **event.log_fields())
        for handler in handlers:
            handler.handle(event)


event_bus = InMemoryEventBus()
