"""
Pipeline DTOs

Architectural Intent:
- Data Transfer Objects for the orchestrator's external inputs
- Input validation at the application boundary
- Decouples external representation (webhooks, CLI flags) from domain model
"""

from dataclasses import dataclass
from typing import Any, Optional

from shipyard.domain.value_objects.build_artifact import BuildArtifact


def _pick(data: dict[str, Any], *keys: str, default: Any = "") -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class TriggerEvent:
    repository: str
    branch: str
    commit_sha: str = ""

    def __post_init__(self) -> None:
        if not self.repository:
            raise ValueError("repository cannot be empty")
        if not self.branch:
            raise ValueError("branch cannot be empty")

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "TriggerEvent":
        return TriggerEvent(
            repository=_pick(data, "repository"),
            branch=_pick(data, "branch"),
            commit_sha=_pick(data, "commit_sha", "commitSha"),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "repository": self.repository,
            "branch": self.branch,
            "commit_sha": self.commit_sha,
        }


@dataclass(frozen=True)
class BuildArtifactInput:
    image_repository: str
    image_tag: str
    digest: str = ""

    def __post_init__(self) -> None:
        if not self.image_repository:
            raise ValueError("image_repository cannot be empty")
        if not self.image_tag:
            raise ValueError("image_tag cannot be empty")

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "BuildArtifactInput":
        return BuildArtifactInput(
            image_repository=_pick(data, "image_repository", "imageRepository"),
            image_tag=str(_pick(data, "image_tag", "imageTag")),
            digest=_pick(data, "digest"),
        )

    def to_artifact(self, trigger: Optional[TriggerEvent] = None) -> BuildArtifact:
        return BuildArtifact(
            image_repository=self.image_repository,
            tag=self.image_tag,
            digest=self.digest,
            source_repository=trigger.repository if trigger else "",
            commit_sha=trigger.commit_sha if trigger else "",
        )


@dataclass(frozen=True)
class ApprovalDecision:
    request_id: str
    approver: str
    decision: str

    def __post_init__(self) -> None:
        if not self.request_id:
            raise ValueError("request_id cannot be empty")
        if not self.approver:
            raise ValueError("approver cannot be empty")
        if self.decision not in ("approve", "reject"):
            raise ValueError("decision must be 'approve' or 'reject'")

    @property
    def approved(self) -> bool:
        return self.decision == "approve"

    @staticmethod
    def from_dict(data: dict[str, Any], request_id: str = "") -> "ApprovalDecision":
        return ApprovalDecision(
            request_id=request_id or _pick(data, "request_id", "requestId"),
            approver=_pick(data, "approver", "approverIdentity", "approver_identity"),
            decision=str(_pick(data, "decision")).lower(),
        )


@dataclass(frozen=True)
class RollbackRequest:
    image_repository: str
    tag: str

    def __post_init__(self) -> None:
        if not self.image_repository:
            raise ValueError("image_repository cannot be empty")
        if not self.tag:
            raise ValueError("tag cannot be empty")

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "RollbackRequest":
        return RollbackRequest(
            image_repository=_pick(data, "image_repository", "imageRepository"),
            tag=str(_pick(data, "tag", "image_tag", "imageTag")),
        )

