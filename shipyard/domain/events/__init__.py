"""
Domain Events Package

Architectural Intent:
- Contains domain events and event bus infrastructure
- Events are the primary mechanism for cross-boundary communication
"""

from shipyard.domain.events.event_base import DomainEvent
from shipyard.domain.events.pipeline_events import (
    RunStartedEvent,
    StageStartedEvent,
    StageCompletedEvent,
    ApprovalRequestedEvent,
    RunSucceededEvent,
    RunFailedEvent,
    RunCancelledEvent,
)

__all__ = [
    "DomainEvent",
    "RunStartedEvent",
    "StageStartedEvent",
    "StageCompletedEvent",
    "ApprovalRequestedEvent",
    "RunSucceededEvent",
    "RunFailedEvent",
    "RunCancelledEvent",
]
