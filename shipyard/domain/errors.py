"""
Pipeline Error Taxonomy

Architectural Intent:
- Every failure a pipeline run can end with has its own exception class
- `reason` is the stable identifier recorded in the run's event log
- `transient` marks classes the owning component retries locally
- `cancels_run` marks classes that end a run Cancelled instead of Failed

Propagation:
- Transient errors are retried inside the component that raised them
  (bounded attempts) and only escape once the budget is exhausted
- Permanent errors propagate to the PipelineCoordinator, which halts the run
"""

from __future__ import annotations
from typing import Any, Optional


class PipelineError(Exception):
    reason = "PipelineError"
    transient = False
    cancels_run = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.reason)
        self.message = message or self.reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "message": self.message,
            "transient": self.transient,
        }


class RemoteUnreachable(PipelineError):
    reason = "RemoteUnreachable"
    transient = True


class PushRejected(PipelineError):
    """Raised by repository adapters when a push is not a fast-forward."""

    reason = "PushRejected"
    transient = True


class ConcurrentUpdateConflict(PipelineError):
    reason = "ConcurrentUpdateConflict"
    transient = True


class DescriptorFieldNotFound(PipelineError):
    reason = "DescriptorFieldNotFound"


class InvalidArtifact(PipelineError):
    reason = "InvalidArtifact"


class ApplyRejected(PipelineError):
    reason = "ApplyRejected"

    def __init__(self, message: str = "", descriptor_name: str = "") -> None:
        super().__init__(message)
        self.descriptor_name = descriptor_name


class RolloutTimeout(PipelineError):
    reason = "RolloutTimeout"

    def __init__(self, message: str = "", status: Optional[Any] = None) -> None:
        super().__init__(message)
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.status is not None:
            data["last_status"] = self.status.to_dict()
        return data


class ApprovalRejected(PipelineError):
    reason = "ApprovalRejected"
    cancels_run = True

    def __init__(self, message: str = "", approver: str = "") -> None:
        super().__init__(message)
        self.approver = approver


class ApprovalExpired(PipelineError):
    reason = "ApprovalExpired"


class RunCancelled(PipelineError):
    reason = "RunCancelled"
    cancels_run = True


class InvalidTransition(PipelineError, ValueError):
    reason = "InvalidTransition"


class RunNotFound(PipelineError, KeyError):
    reason = "RunNotFound"

    def __str__(self) -> str:
        return self.message


class ApprovalRequestNotFound(PipelineError, KeyError):
    reason = "ApprovalRequestNotFound"

    def __str__(self) -> str:
        return self.message
