"""
Pipeline Run Module

Architectural Intent:
- PipelineRun aggregate is the consistency boundary for one execution of the CI or CD pipeline
- Lifecycle: Pending -> Running -> [AwaitingApproval -> Running] -> Succeeded | Failed | Cancelled
- Terminal runs reject every further transition
- All state changes produce new instances to ensure auditability
- Stage events form an append-only log; the last successful stage is derived from it

Domain Events:
- RunStartedEvent, StageStartedEvent, StageCompletedEvent, ApprovalRequestedEvent
- RunSucceededEvent, RunFailedEvent, RunCancelledEvent
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from enum import Enum, auto
from typing import Any, Optional

from shipyard.domain.errors import InvalidTransition
from shipyard.domain.events.pipeline_events import (
    RunStartedEvent,
    StageStartedEvent,
    StageCompletedEvent,
    ApprovalRequestedEvent,
    RunSucceededEvent,
    RunFailedEvent,
    RunCancelledEvent,
)


class PipelineKind(Enum):
    CI = "CI"
    CD = "CD"


class RunStatus(Enum):
    PENDING = auto()
    RUNNING = auto()
    AWAITING_APPROVAL = auto()
    SUCCEEDED = auto()
    FAILED = auto()
    CANCELLED = auto()


TERMINAL_STATUSES = frozenset(
    {RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED}
)


class StageOutcome(Enum):
    SUCCEEDED = auto()
    FAILED = auto()
    CANCELLED = auto()
    SKIPPED = auto()


@dataclass(frozen=True)
class StageEvent:
    run_id: str
    stage: str
    outcome: StageOutcome
    started_at: datetime
    ended_at: datetime
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "stage": self.stage,
            "outcome": self.outcome.name,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "detail": self.detail,
        }


@dataclass(frozen=True)
class PipelineRun:
    run_id: str
    kind: PipelineKind
    status: RunStatus = RunStatus.PENDING
    current_stage: str = ""
    image_ref: str = ""
    trigger: dict[str, Any] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    stage_events: tuple[StageEvent, ...] = ()
    failure_reason: str = ""
    failure_message: str = ""
    failure_detail: dict[str, Any] = field(default_factory=dict)
    approval_request_id: str = ""
    domain_events: tuple = ()

    @staticmethod
    def create(
        kind: PipelineKind,
        image_ref: str = "",
        trigger: Optional[dict[str, Any]] = None,
    ) -> PipelineRun:
        return PipelineRun(
            run_id=f"{kind.value.lower()}-{uuid.uuid4().hex[:12]}",
            kind=kind,
            image_ref=image_ref,
            trigger=dict(trigger or {}),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def last_successful_stage(self) -> str:
        for event in reversed(self.stage_events):
            if event.outcome is StageOutcome.SUCCEEDED:
                return event.stage
        return ""

    @property
    def duration_seconds(self) -> float:
        if not self.started_at:
            return 0.0
        end = self.ended_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def start(self) -> PipelineRun:
        if self.status is not RunStatus.PENDING:
            raise InvalidTransition("Run can only start from PENDING state")
        return replace(
            self,
            status=RunStatus.RUNNING,
            started_at=datetime.now(UTC),
            domain_events=self.domain_events
            + (
                RunStartedEvent(
                    aggregate_id=self.run_id,
                    kind=self.kind.value,
                    image_ref=self.image_ref,
                    trigger=dict(self.trigger),
                ),
            ),
        )

    def enter_stage(self, stage: str) -> PipelineRun:
        if self.status is not RunStatus.RUNNING:
            raise InvalidTransition(f"Run must be RUNNING to enter stage {stage}")
        return replace(
            self,
            current_stage=stage,
            domain_events=self.domain_events
            + (StageStartedEvent(aggregate_id=self.run_id, kind=self.kind.value, stage=stage),),
        )

    def await_approval(
        self, request_id: str, required_count: int, deadline: datetime
    ) -> PipelineRun:
        if self.status is not RunStatus.RUNNING:
            raise InvalidTransition("Run must be RUNNING to await approval")
        return replace(
            self,
            status=RunStatus.AWAITING_APPROVAL,
            approval_request_id=request_id,
            domain_events=self.domain_events
            + (
                ApprovalRequestedEvent(
                    aggregate_id=self.run_id,
                    request_id=request_id,
                    required_count=required_count,
                    deadline=deadline.isoformat(),
                    image_ref=self.image_ref,
                ),
            ),
        )

    def resume(self) -> PipelineRun:
        if self.status is not RunStatus.AWAITING_APPROVAL:
            raise InvalidTransition("Run must be AWAITING_APPROVAL to resume")
        return replace(self, status=RunStatus.RUNNING)

    def with_image_ref(self, image_ref: str) -> PipelineRun:
        self._require_active("update image reference")
        return replace(self, image_ref=image_ref)

    def record_stage(self, event: StageEvent) -> PipelineRun:
        self._require_active("record a stage")
        return replace(
            self,
            stage_events=self.stage_events + (event,),
            domain_events=self.domain_events
            + (
                StageCompletedEvent(
                    aggregate_id=self.run_id,
                    kind=self.kind.value,
                    stage=event.stage,
                    outcome=event.outcome.name,
                    started_at=event.started_at.isoformat(),
                    ended_at=event.ended_at.isoformat(),
                    detail=dict(event.detail),
                ),
            ),
        )

    def succeed(self) -> PipelineRun:
        if self.status is not RunStatus.RUNNING:
            raise InvalidTransition("Run must be RUNNING to succeed")
        ended_at = datetime.now(UTC)
        finished = replace(self, status=RunStatus.SUCCEEDED, ended_at=ended_at)
        return replace(
            finished,
            domain_events=self.domain_events
            + (
                RunSucceededEvent(
                    aggregate_id=self.run_id,
                    kind=self.kind.value,
                    image_ref=self.image_ref,
                    duration_seconds=finished.duration_seconds,
                ),
            ),
        )

    def fail(
        self, reason: str, message: str = "", detail: Optional[dict[str, Any]] = None
    ) -> PipelineRun:
        self._require_active("fail")
        finished = replace(
            self,
            status=RunStatus.FAILED,
            ended_at=datetime.now(UTC),
            failure_reason=reason,
            failure_message=message,
            failure_detail=dict(detail or {}),
        )
        return replace(
            finished,
            domain_events=self.domain_events
            + (
                RunFailedEvent(
                    aggregate_id=self.run_id,
                    kind=self.kind.value,
                    reason=reason,
                    message=message,
                    last_successful_stage=self.last_successful_stage,
                    duration_seconds=finished.duration_seconds,
                ),
            ),
        )

    def cancel(self, reason: str = "RunCancelled", message: str = "") -> PipelineRun:
        self._require_active("cancel")
        finished = replace(
            self,
            status=RunStatus.CANCELLED,
            ended_at=datetime.now(UTC),
            failure_reason=reason,
            failure_message=message,
        )
        return replace(
            finished,
            domain_events=self.domain_events
            + (
                RunCancelledEvent(
                    aggregate_id=self.run_id,
                    kind=self.kind.value,
                    reason=reason,
                    message=message,
                    last_successful_stage=self.last_successful_stage,
                    duration_seconds=finished.duration_seconds,
                ),
            ),
        )

    def _require_active(self, action: str) -> None:
        if self.is_terminal:
            raise InvalidTransition(
                f"Cannot {action} on run {self.run_id}: already {self.status.name}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "kind": self.kind.value,
            "status": self.status.name,
            "current_stage": self.current_stage,
            "image_ref": self.image_ref,
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "failure_reason": self.failure_reason or None,
            "failure_message": self.failure_message or None,
            "failure_detail": self.failure_detail or None,
            "last_successful_stage": self.last_successful_stage or None,
            "approval_request_id": self.approval_request_id or None,
            "stage_events": [e.to_dict() for e in self.stage_events],
        }

    def __repr__(self) -> str:
        return (
            f"PipelineRun(run_id={self.run_id}, kind={self.kind.value}, "
            f"status={self.status.name}, stage={self.current_stage})"
        )
