"""
Slack Notification Adapter

Architectural Intent:
- Implements NotificationPort for Slack webhook notifications
- Stub implementation that logs calls for development and testing
- Subscribes to the event bus: approval requests and terminal run outcomes
  are announced without the coordinator knowing about Slack

Design Decisions:
- Maintains an in-memory message store for stub mode
- Formats outcomes with status-based color coding for Slack UI
"""

import logging
import uuid
from typing import Optional

from shipyard.domain.events.event_base import DomainEvent
from shipyard.domain.events.pipeline_events import (
    ApprovalRequestedEvent,
    RunCancelledEvent,
    RunFailedEvent,
    RunSucceededEvent,
)
from shipyard.domain.ports.event_bus_port import EventBusPort

logger = logging.getLogger(__name__)

STATUS_COLORS = {
    "SUCCEEDED": "#00CC00",
    "FAILED": "#FF0000",
    "CANCELLED": "#808080",
}


class SlackAdapter:
    """Slack notification adapter (stub)."""

    def __init__(self, webhook_url: str = "") -> None:
        self._webhook_url = webhook_url
        self._messages: dict[str, dict] = {}

    @property
    def messages(self) -> list[dict]:
        return list(self._messages.values())

    def subscribe(self, event_bus: EventBusPort) -> None:
        event_bus.subscribe(ApprovalRequestedEvent, self._on_approval_requested)
        event_bus.subscribe(RunSucceededEvent, self._on_run_finished)
        event_bus.subscribe(RunFailedEvent, self._on_run_finished)
        event_bus.subscribe(RunCancelledEvent, self._on_run_finished)

    async def send_approval_request(
        self, run_id: str, request_id: str, image_ref: str, required_count: int
    ) -> bool:
        """Ask approvers to decide on a pending deployment.

        Args:
            run_id: The CD run waiting at the gate
            request_id: Approval request approvers must reference
            image_ref: Image the run will deploy
            required_count: Number of distinct approvals needed
        """
        message_id = self._store(
            {
                "type": "approval_request",
                "run_id": run_id,
                "request_id": request_id,
                "image_ref": image_ref,
                "required_count": required_count,
                "color": "#0099FF",
            }
        )
        logger.info(
            "Slack send_approval_request (stub): %s - run %s needs %d approval(s) "
            "on %s [webhook=%s]",
            message_id,
            run_id,
            required_count,
            request_id,
            self._webhook_url,
        )
        return True

    async def send_run_outcome(
        self, run_id: str, kind: str, status: str, message: str = ""
    ) -> bool:
        message_id = self._store(
            {
                "type": "run_outcome",
                "run_id": run_id,
                "kind": kind,
                "status": status,
                "message": message,
                "color": STATUS_COLORS.get(status, "#808080"),
            }
        )
        logger.info(
            "Slack send_run_outcome (stub): %s - %s run %s %s [webhook=%s]",
            message_id,
            kind,
            run_id,
            status,
            self._webhook_url,
        )
        return True

    def get_message(self, message_id: str) -> Optional[dict]:
        """Retrieve a sent message by ID (for testing)."""
        return self._messages.get(message_id)

    async def _on_approval_requested(self, event: DomainEvent) -> None:
        assert isinstance(event, ApprovalRequestedEvent)
        await self.send_approval_request(
            event.aggregate_id, event.request_id, event.image_ref, event.required_count
        )

    async def _on_run_finished(self, event: DomainEvent) -> None:
        if isinstance(event, RunSucceededEvent):
            await self.send_run_outcome(
                event.aggregate_id, event.kind, "SUCCEEDED", event.image_ref
            )
        elif isinstance(event, (RunFailedEvent, RunCancelledEvent)):
            status = "FAILED" if isinstance(event, RunFailedEvent) else "CANCELLED"
            await self.send_run_outcome(
                event.aggregate_id, event.kind, status, f"{event.reason}: {event.message}"
            )

    def _store(self, payload: dict) -> str:
        message_id = f"SLACK-{uuid.uuid4().hex[:8].upper()}"
        self._messages[message_id] = {"message_id": message_id, **payload}
        return message_id
