"""
Approval Gate

Architectural Intent:
- Holds every open ApprovalRequest and applies approver decisions to it
- Pending -> Approved (quorum of distinct approvers) | Rejected (single veto)
  | Expired (deadline passed with insufficient approvals)
- Waiting is a timed state transition: wake on a decision, on the deadline,
  or on run cancellation, whichever comes first
- A background check expires overdue requests even when nobody is waiting

Design Decisions:
- Decisions on already-decided requests are ignored and logged, not raised:
  late clicks from approvers are normal
- Decided requests are archived when their run leaves the approval stage and
  stay queryable
"""

import asyncio
import logging
from datetime import datetime, UTC
from typing import Optional

from shipyard.application.services.waits import wait_for_any
from shipyard.domain.entities.approval_request import ApprovalRequest
from shipyard.domain.errors import ApprovalRequestNotFound

logger = logging.getLogger(__name__)


class ApprovalGate:
    def __init__(self, check_interval_seconds: float = 5.0) -> None:
        self.check_interval_seconds = check_interval_seconds
        self._requests: dict[str, ApprovalRequest] = {}
        self._archived: dict[str, ApprovalRequest] = {}
        self._signals: dict[str, asyncio.Event] = {}
        self._timeout_task: Optional[asyncio.Task] = None

    def request_approval(
        self, run_id: str, required_count: int, deadline: datetime
    ) -> ApprovalRequest:
        request = ApprovalRequest.create(run_id, required_count, deadline)
        self._requests[request.request_id] = request
        self._signals[request.request_id] = asyncio.Event()
        logger.info(
            "Approval %s requested for run %s: %d approval(s) before %s",
            request.request_id,
            run_id,
            required_count,
            deadline.isoformat(),
        )
        return request

    def get(self, request_id: str) -> ApprovalRequest:
        request = self._requests.get(request_id) or self._archived.get(request_id)
        if request is None:
            raise ApprovalRequestNotFound(f"Approval request {request_id} not found")
        return request

    def pending(self) -> list[ApprovalRequest]:
        return [r for r in self._requests.values() if not r.is_terminal]

    def record_approval(self, request_id: str, approver: str) -> ApprovalRequest:
        request = self._refresh(request_id)
        if request.is_terminal:
            logger.warning(
                "Ignoring approval by %s: request %s is %s",
                approver,
                request_id,
                request.state.name,
            )
            return request
        return self._store(request.record_approval(approver))

    def record_rejection(self, request_id: str, approver: str) -> ApprovalRequest:
        request = self._refresh(request_id)
        if request.is_terminal:
            logger.warning(
                "Ignoring rejection by %s: request %s is %s",
                approver,
                request_id,
                request.state.name,
            )
            return request
        return self._store(request.record_rejection(approver))

    def check_timeouts(self, now: Optional[datetime] = None) -> list[ApprovalRequest]:
        """Expires every pending request whose deadline has passed."""
        now = now or datetime.now(UTC)
        expired = []
        for request_id in list(self._requests):
            request = self._requests[request_id]
            updated = request.expire_if_due(now)
            if updated is not request:
                self._store(updated)
                expired.append(updated)
        return expired

    async def wait_for_decision(
        self, request_id: str, cancel_event: Optional[asyncio.Event] = None
    ) -> ApprovalRequest:
        """Blocks until the request is decided or expires, or the run is cancelled.

        Returns the request as it stands; it is still PENDING only when
        `cancel_event` fired first.
        """
        while True:
            request = self._refresh(request_id)
            if request.is_terminal:
                return request
            if cancel_event is not None and cancel_event.is_set():
                return request

            signal = self._signals[request_id]
            signal.clear()
            remaining = (request.deadline - datetime.now(UTC)).total_seconds()
            await wait_for_any(
                signal,
                cancel_event,
                timeout=min(remaining, self.check_interval_seconds),
            )

    def archive(self, request_id: str) -> None:
        request = self._requests.pop(request_id, None)
        self._signals.pop(request_id, None)
        if request is not None:
            self._archived[request_id] = request

    async def start(self) -> None:
        if self._timeout_task is None:
            self._timeout_task = asyncio.create_task(self._timeout_loop())

    async def stop(self) -> None:
        if self._timeout_task is not None:
            self._timeout_task.cancel()
            try:
                await self._timeout_task
            except asyncio.CancelledError:
                pass
            self._timeout_task = None

    async def _timeout_loop(self) -> None:
        while True:
            for request in self.check_timeouts():
                logger.warning(
                    "Approval %s for run %s expired with %d/%d approvals",
                    request.request_id,
                    request.run_id,
                    len(request.approvals),
                    request.required_count,
                )
            await asyncio.sleep(self.check_interval_seconds)

    def _refresh(self, request_id: str) -> ApprovalRequest:
        request = self.get(request_id)
        if request_id in self._requests:
            updated = request.expire_if_due()
            if updated is not request:
                return self._store(updated)
        return request

    def _store(self, request: ApprovalRequest) -> ApprovalRequest:
        if request.request_id in self._archived:
            self._archived[request.request_id] = request
        else:
            self._requests[request.request_id] = request
        signal = self._signals.get(request.request_id)
        if signal is not None:
            signal.set()
        if request.is_terminal:
            logger.info("Approval %s is %s", request.request_id, request.state.name)
        return request
