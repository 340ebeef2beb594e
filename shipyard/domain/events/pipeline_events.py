"""
Pipeline Events

Architectural Intent:
- Events emitted by PipelineRun transitions
- Consumed by monitoring, notification, telemetry and persistence collaborators
- Payloads are plain strings and dicts so they serialize without the domain model
"""

from dataclasses import dataclass, field
from typing import Any

from shipyard.domain.events.event_base import DomainEvent


@dataclass(frozen=True)
class RunStartedEvent(DomainEvent):
    kind: str = ""
    image_ref: str = ""
    trigger: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StageStartedEvent(DomainEvent):
    kind: str = ""
    stage: str = ""


@dataclass(frozen=True)
class StageCompletedEvent(DomainEvent):
    kind: str = ""
    stage: str = ""
    outcome: str = ""
    started_at: str = ""
    ended_at: str = ""
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ApprovalRequestedEvent(DomainEvent):
    request_id: str = ""
    required_count: int = 0
    deadline: str = ""
    image_ref: str = ""


@dataclass(frozen=True)
class RunSucceededEvent(DomainEvent):
    kind: str = ""
    image_ref: str = ""
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class RunFailedEvent(DomainEvent):
    kind: str = ""
    reason: str = ""
    message: str = ""
    last_successful_stage: str = ""
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class RunCancelledEvent(DomainEvent):
    kind: str = ""
    reason: str = ""
    message: str = ""
    last_successful_stage: str = ""
    duration_seconds: float = 0.0
