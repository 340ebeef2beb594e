"""
Image Reference Value Object

Architectural Intent:
- Immutable value object for a container image reference (repository:tag)
- Validates repository path and tag format
- Keeps a registry port (registry:5000/org/app) distinct from the tag
"""

import re
from dataclasses import dataclass

# registry host[:port]/path/components, lowercase path segments
_REPOSITORY_RE = re.compile(
    r"^(?:[A-Za-z0-9.-]+(?::\d+)?/)?[a-z0-9]+(?:[._-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*$"
)

_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")

_DIGEST_RE = re.compile(r"^[a-z0-9]+:[a-fA-F0-9]{32,}$")


@dataclass(frozen=True)
class ImageReference:
    """
    Value Object representing a container image reference.
    """
    repository: str
    tag: str = ""
    digest: str = ""

    def __post_init__(self) -> None:
        if not self.repository:
            raise ValueError("Image repository cannot be empty")
        if not _REPOSITORY_RE.match(self.repository):
            raise ValueError(f"Invalid image repository: {self.repository!r}")
        if not self.tag and not self.digest:
            raise ValueError(f"Image reference {self.repository!r} needs a tag or digest")
        if self.tag and not _TAG_RE.match(self.tag):
            raise ValueError(f"Invalid image tag: {self.tag!r}")
        if self.digest and not _DIGEST_RE.match(self.digest):
            raise ValueError(f"Invalid image digest: {self.digest!r}")

    def __str__(self) -> str:
        value = self.repository
        if self.tag:
            value += f":{self.tag}"
        if self.digest:
            value += f"@{self.digest}"
        return value

    def with_tag(self, tag: str) -> "ImageReference":
        return ImageReference(repository=self.repository, tag=tag)

    @staticmethod
    def parse(value: str) -> "ImageReference":
        """
        Parses 'org/app:42', 'registry:5000/org/app:42' or 'org/app@sha256:...'.
        The tag is the part after the last ':' that follows the last '/'.
        """
        value = value.strip()
        digest = ""
        if "@" in value:
            value, digest = value.split("@", 1)

        tag = ""
        last_slash = value.rfind("/")
        last_colon = value.rfind(":")
        if last_colon > last_slash:
            tag = value[last_colon + 1:]
            value = value[:last_colon]

        return ImageReference(repository=value, tag=tag, digest=digest)
