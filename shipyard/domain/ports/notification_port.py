"""
Notification Port

Architectural Intent:
- Abstract interface for telling humans about pipeline runs
- Approval requests go to approvers; terminal outcomes go to the owning team
- Decouples the coordinator from channels (Slack, email, ...)

Design Decisions:
- Uses Protocol for structural typing (no inheritance needed)
- Methods return bool to indicate success/failure; a failed notification never fails a run
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class NotificationPort(Protocol):
    """Port for sending pipeline notifications through external channels."""

    async def send_approval_request(
        self, run_id: str, request_id: str, image_ref: str, required_count: int
    ) -> bool:
        """Ask approvers to approve or reject a pending deployment.

        Returns:
            True if notification sent successfully, False otherwise
        """
        ...

    async def send_run_outcome(
        self, run_id: str, kind: str, status: str, message: str = ""
    ) -> bool:
        """Announce that a run reached a terminal status.

        Returns:
            True if notification sent successfully, False otherwise
        """
        ...
