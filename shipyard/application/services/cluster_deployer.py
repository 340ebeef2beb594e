"""
Cluster Deployer

Architectural Intent:
- The only component that mutates live cluster state
- apply(): submits each descriptor in order; a rejection is fatal for the run and
  is never retried, since it means the descriptor itself is bad
- wait_for_rollout(): polls at a fixed interval until ready == desired or the
  timeout elapses; returns a non-terminal RolloutStatus on timeout and leaves
  the failure decision to the coordinator

Cancellation:
- The poll sleep doubles as a wait on the run's cancel event
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from shipyard.application.services.waits import wait_for_any
from shipyard.domain.entities.descriptor import DeploymentDescriptor
from shipyard.domain.errors import ApplyRejected, RemoteUnreachable
from shipyard.domain.ports.cluster_port import ClusterPort, DeploymentState
from shipyard.domain.value_objects.rollout_status import RolloutStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyResult:
    applied: tuple[str, ...] = ()
    acknowledgements: dict[str, str] = field(default_factory=dict)


class ClusterDeployer:
    def __init__(self, cluster: ClusterPort, poll_interval_seconds: float = 3.0):
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        self.cluster = cluster
        self.poll_interval_seconds = poll_interval_seconds

    async def apply(self, descriptors: Sequence[DeploymentDescriptor]) -> ApplyResult:
        applied = []
        acknowledgements = {}
        for descriptor in descriptors:
            key = f"{descriptor.kind.value}/{descriptor.name}"
            try:
                ack = await self.cluster.apply(descriptor)
            except ApplyRejected as e:
                logger.error("Cluster rejected %s: %s", key, e)
                if not e.descriptor_name:
                    e.descriptor_name = key
                raise
            logger.info("Applied %s: %s", key, ack)
            applied.append(key)
            acknowledgements[key] = ack
        return ApplyResult(applied=tuple(applied), acknowledgements=acknowledgements)

    async def wait_for_rollout(
        self,
        deployment_name: str,
        timeout: float,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RolloutStatus:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        status = RolloutStatus(name=deployment_name, desired_replicas=0)

        while True:
            try:
                status = self._to_status(await self.cluster.get_status(deployment_name))
            except RemoteUnreachable as e:
                logger.warning("Rollout poll of %s failed: %s", deployment_name, e)
            else:
                logger.debug("Rollout %s", status)
                if status.is_complete:
                    return status.mark_terminal()

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning("Rollout of %s timed out at %s", deployment_name, status)
                return status

            await wait_for_any(
                cancel_event, timeout=min(self.poll_interval_seconds, remaining)
            )
            if cancel_event is not None and cancel_event.is_set():
                return status

    @staticmethod
    def _to_status(state: DeploymentState) -> RolloutStatus:
        return RolloutStatus(
            name=state.name,
            desired_replicas=state.desired_replicas,
            observed_replicas=state.observed_replicas,
            ready_replicas=state.ready_replicas,
            last_condition=state.conditions[-1] if state.conditions else "",
            generation_observed=state.generation_observed,
        )
