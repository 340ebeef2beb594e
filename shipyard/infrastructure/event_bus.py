"""
Event Bus Infrastructure

Architectural Intent:
- In-memory event bus implementation for publishing domain events
- Supports async subscription handlers, per event type or for every event
- A failing subscriber is logged and skipped; it never fails the publisher's run
"""

import logging
from shipyard.domain.events.event_base import DomainEvent
from shipyard.domain.ports.event_bus_port import EventHandler as Handler

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = {}
        self._catch_all: list[Handler] = []

    async def publish(self, events: list[DomainEvent]) -> None:
        for event in events:
            handlers = self._handlers.get(type(event), []) + self._catch_all
            for handler in handlers:
                try:
                    await handler(event)
                except Exception:
                    logger.exception(
                        "Event handler %r failed on %s (%s)",
                        handler,
                        event.event_type,
                        event.event_id,
                        extra={"run_id": event.run_id},
                    )

    def subscribe(self, event_type: type, handler: Handler) -> None:
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self._catch_all.append(handler)
