"""
Rollback Deployment Use Case

Architectural Intent:
- Rollback is a manual replay: the prior tag goes through the same CI pipeline
  as a fresh build, which commits it to the configuration repository and in turn
  drives CD
- No cluster-side undo exists; the configuration repository stays the single
  source of truth
"""

import logging
from typing import Optional

from shipyard.application.dtos.pipeline_dtos import TriggerEvent
from shipyard.application.orchestration.pipeline_coordinator import PipelineCoordinator
from shipyard.domain.entities.pipeline_run import PipelineRun
from shipyard.domain.value_objects.build_artifact import BuildArtifact

logger = logging.getLogger(__name__)


class RollbackDeployment:
    def __init__(self, coordinator: PipelineCoordinator):
        self.coordinator = coordinator

    async def execute(
        self, image_repository: str, tag: str, requested_by: Optional[str] = None
    ) -> PipelineRun:
        settings = self.coordinator.settings
        artifact = BuildArtifact(
            image_repository=image_repository,
            tag=tag,
            source_repository=settings.application_repository,
        )
        logger.warning(
            "Rolling back to %s%s",
            artifact,
            f" (requested by {requested_by})" if requested_by else "",
        )
        trigger = TriggerEvent(
            repository=settings.application_repository,
            branch=settings.application_branch,
            commit_sha=f"rollback:{tag}",
        )
        return await self.coordinator.start_ci(artifact, trigger)
