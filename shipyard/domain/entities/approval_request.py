"""
Approval Request Module

Architectural Intent:
- ApprovalRequest is the state machine behind the approval gate
- Pending -> Approved | Rejected | Expired; all three outcomes are terminal
- Approvals are a set of identities, so the same approver counts once
- A single rejection vetoes the request regardless of approvals already received
- All state changes produce new instances
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, UTC
from enum import Enum, auto
from typing import Any, Optional

from shipyard.domain.errors import InvalidTransition


class ApprovalState(Enum):
    PENDING = auto()
    APPROVED = auto()
    REJECTED = auto()
    EXPIRED = auto()


@dataclass(frozen=True)
class ApprovalRequest:
    request_id: str
    run_id: str
    required_count: int
    deadline: datetime
    approvals: frozenset[str] = frozenset()
    state: ApprovalState = ApprovalState.PENDING
    rejected_by: str = ""
    decided_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.required_count < 1:
            raise ValueError("required_count must be at least 1")
        if self.deadline.tzinfo is None:
            raise ValueError("deadline must be timezone-aware")

    @staticmethod
    def create(run_id: str, required_count: int, deadline: datetime) -> ApprovalRequest:
        return ApprovalRequest(
            request_id=f"apr-{uuid.uuid4().hex[:12]}",
            run_id=run_id,
            required_count=required_count,
            deadline=deadline,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state is not ApprovalState.PENDING

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(UTC)) >= self.deadline

    def record_approval(
        self, approver: str, now: Optional[datetime] = None
    ) -> ApprovalRequest:
        self._require_pending("approve")
        if not approver:
            raise ValueError("approver identity cannot be empty")
        approvals = self.approvals | {approver}
        if len(approvals) >= self.required_count:
            return replace(
                self,
                approvals=approvals,
                state=ApprovalState.APPROVED,
                decided_at=now or datetime.now(UTC),
            )
        return replace(self, approvals=approvals)

    def record_rejection(
        self, approver: str, now: Optional[datetime] = None
    ) -> ApprovalRequest:
        self._require_pending("reject")
        if not approver:
            raise ValueError("approver identity cannot be empty")
        return replace(
            self,
            state=ApprovalState.REJECTED,
            rejected_by=approver,
            decided_at=now or datetime.now(UTC),
        )

    def expire_if_due(self, now: Optional[datetime] = None) -> ApprovalRequest:
        now = now or datetime.now(UTC)
        if self.is_terminal or not self.is_overdue(now):
            return self
        return replace(self, state=ApprovalState.EXPIRED, decided_at=now)

    def _require_pending(self, action: str) -> None:
        if self.is_terminal:
            raise InvalidTransition(
                f"Cannot {action} request {self.request_id}: already {self.state.name}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "run_id": self.run_id,
            "required_count": self.required_count,
            "approvals": sorted(self.approvals),
            "deadline": self.deadline.isoformat(),
            "state": self.state.name,
            "rejected_by": self.rejected_by,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }
