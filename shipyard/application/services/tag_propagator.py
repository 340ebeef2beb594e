"""
Tag Propagator

Architectural Intent:
- Writes a new image reference into the deployment descriptor of the
  configuration repository and commits the change
- The image field is located structurally (path-addressed), so other image-like
  strings in the file are never touched
- The mutation re-parses whatever content is current on each attempt, so a
  rebase after a concurrent push reapplies it on the fresh remote state

Idempotence:
- Propagating a reference that is already committed produces no new commit
"""

import logging
from pathlib import Path
from typing import Optional, Union

from shipyard.application.services.version_control import VersionControlClient
from shipyard.domain.entities.descriptor import DescriptorFile
from shipyard.domain.errors import DescriptorFieldNotFound, InvalidArtifact
from shipyard.domain.ports.repository_port import CommitResult
from shipyard.domain.value_objects.image_reference import ImageReference

logger = logging.getLogger(__name__)


class TagPropagator:
    def __init__(
        self,
        vcs: VersionControlClient,
        workspace: str,
        descriptor_name: Optional[str] = None,
        container: Optional[str] = None,
    ):
        self.vcs = vcs
        self.workspace = workspace
        self.descriptor_name = descriptor_name
        self.container = container

    def current_image(self, descriptor_path: str) -> str:
        path = Path(self.workspace) / descriptor_path
        if not path.exists():
            raise DescriptorFieldNotFound(f"Descriptor {descriptor_path} does not exist")
        descriptor = DescriptorFile.parse(path.read_text()).find(self.descriptor_name)
        return descriptor.image(self.container)

    async def propagate(
        self, descriptor_path: str, target_image_ref: Union[str, ImageReference]
    ) -> CommitResult:
        try:
            target = str(ImageReference.parse(str(target_image_ref)))
        except ValueError as e:
            raise InvalidArtifact(str(e)) from e

        # Fail before touching the workspace if the field cannot be addressed
        current = self.current_image(descriptor_path)
        logger.info("Propagating %s into %s (was %s)", target, descriptor_path, current)

        def mutate(text: str) -> str:
            descriptor_file = DescriptorFile.parse(text)
            descriptor = descriptor_file.find(self.descriptor_name)
            if descriptor.image(self.container) == target:
                return text
            return descriptor_file.with_image(
                target, self.descriptor_name, self.container
            ).dump()

        name = self.descriptor_name or Path(descriptor_path).stem
        result = await self.vcs.commit_and_push(
            self.workspace,
            {descriptor_path: mutate},
            f"Update {name} image to {target}",
        )
        if not result.committed:
            logger.info("%s already references %s, nothing committed", descriptor_path, target)
        return result
