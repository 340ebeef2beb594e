"""Tests for the Slack notification adapter."""

import pytest

from shipyard.domain.events.pipeline_events import (
    ApprovalRequestedEvent,
    RunCancelledEvent,
    RunSucceededEvent,
)
from shipyard.domain.ports.notification_port import NotificationPort
from shipyard.infrastructure.adapters.slack_adapter import SlackAdapter
from shipyard.infrastructure.event_bus import EventBus


class TestSlackAdapter:
    def test_implements_port(self):
        assert isinstance(SlackAdapter(), NotificationPort)

    @pytest.mark.asyncio
    async def test_send_approval_request(self):
        slack = SlackAdapter("https://hooks.slack.example/T000")
        assert await slack.send_approval_request("cd-1", "apr-1", "org/app:42", 2) is True

        (message,) = slack.messages
        assert message["message_id"].startswith("SLACK-")
        assert message["request_id"] == "apr-1"
        assert slack.get_message(message["message_id"]) == message

    @pytest.mark.asyncio
    async def test_outcomes_from_event_bus(self):
        bus = EventBus()
        slack = SlackAdapter()
        slack.subscribe(bus)

        await bus.publish([
            ApprovalRequestedEvent(aggregate_id="cd-1", request_id="apr-1", required_count=1),
            RunCancelledEvent(
                aggregate_id="cd-1", kind="CD", reason="ApprovalRejected", message="no"
            ),
            RunSucceededEvent(aggregate_id="ci-1", kind="CI", image_ref="org/app:42"),
        ])

        approval, cancelled, succeeded = slack.messages
        assert approval["type"] == "approval_request"
        assert cancelled["status"] == "CANCELLED"
        assert cancelled["message"] == "ApprovalRejected: no"
        assert succeeded["color"] == "#00CC00"
        assert succeeded["message"] == "org/app:42"

    def test_unknown_message(self):
        assert SlackAdapter().get_message("SLACK-NOPE") is None
