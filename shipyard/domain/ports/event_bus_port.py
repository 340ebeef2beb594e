"""
Event Bus Port

Architectural Intent:
- The coordinator publishes run and stage events without knowing their consumers
- Run store, telemetry and notifier subscribe per event type or to everything
- Handlers are awaited in publication order; one failing handler must not stop the rest
"""

from typing import Protocol, Callable, Awaitable, runtime_checkable
from shipyard.domain.events.event_base import DomainEvent

EventHandler = Callable[[DomainEvent], Awaitable[None]]


@runtime_checkable
class EventBusPort(Protocol):
    async def publish(self, events: list[DomainEvent]) -> None:
        """Deliver each event, in order, to its type's handlers and then the catch-all ones."""
        ...

    def subscribe(self, event_type: type, handler: EventHandler) -> None: ...

    def subscribe_all(self, handler: EventHandler) -> None: ...
