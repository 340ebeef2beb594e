from dataclasses import dataclass

from shipyard.domain.errors import InvalidArtifact
from shipyard.domain.value_objects.image_reference import ImageReference


@dataclass(frozen=True)
class BuildArtifact:
    """
    Value Object representing the output of the image build stage.
    Downstream stages reference it and never mutate it.
    """
    image_repository: str
    tag: str
    digest: str = ""
    source_repository: str = ""
    commit_sha: str = ""

    @property
    def image_ref(self) -> ImageReference:
        """The reference committed into descriptors (repository:tag, no digest)."""
        try:
            return ImageReference(repository=self.image_repository, tag=self.tag)
        except ValueError as e:
            raise InvalidArtifact(str(e)) from e

    def __str__(self) -> str:
        return f"{self.image_repository}:{self.tag}"
