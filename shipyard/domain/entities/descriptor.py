"""
Deployment Descriptor Module

Architectural Intent:
- DeploymentDescriptor wraps one structured manifest document (Deployment or Service)
- The image reference is addressed by path, never by text search:
  spec.template.spec.containers[<container>].image
- Every field other than the image reference is opaque and passed through untouched
- DescriptorFile models a multi-document YAML file owned by the configuration repository

Design Decisions:
- Replacement produces a new document (deep copy); parsed documents are never mutated
- Container selection: explicit name, else the only container, else the container
  named like the descriptor; anything else is ambiguous and rejected
- Documents of other kinds (ConfigMap, Ingress, ...) are carried through on dump
"""

from __future__ import annotations
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import yaml

from shipyard.domain.errors import DescriptorFieldNotFound

CONTAINERS_PATH = ("spec", "template", "spec", "containers")


class DescriptorKind(Enum):
    DEPLOYMENT = "Deployment"
    SERVICE = "Service"


@dataclass(frozen=True)
class DeploymentDescriptor:
    kind: DescriptorKind
    name: str
    document: dict[str, Any] = field(compare=False, repr=False)

    @staticmethod
    def from_document(document: Any) -> DeploymentDescriptor:
        if not isinstance(document, dict):
            raise ValueError("Descriptor document must be a mapping")
        try:
            kind = DescriptorKind(document.get("kind"))
        except ValueError:
            raise ValueError(f"Unsupported descriptor kind: {document.get('kind')!r}")
        metadata = document.get("metadata") or {}
        name = metadata.get("name") if isinstance(metadata, dict) else None
        if not name:
            raise ValueError(f"{kind.value} descriptor is missing metadata.name")
        return DeploymentDescriptor(kind=kind, name=name, document=document)

    @property
    def namespace(self) -> Optional[str]:
        return (self.document.get("metadata") or {}).get("namespace")

    @property
    def replicas(self) -> Optional[int]:
        if self.kind is not DescriptorKind.DEPLOYMENT:
            return None
        # Kubernetes defaults an unset replica count to 1
        return int((self.document.get("spec") or {}).get("replicas", 1))

    @property
    def target_port(self) -> Optional[Any]:
        spec = self.document.get("spec") or {}
        if self.kind is DescriptorKind.SERVICE:
            ports = spec.get("ports") or []
            if ports and isinstance(ports[0], dict):
                return ports[0].get("targetPort", ports[0].get("port"))
            return None
        try:
            containers = spec["template"]["spec"]["containers"]
            return containers[0]["ports"][0]["containerPort"]
        except (KeyError, IndexError, TypeError):
            return None

    def image(self, container: Optional[str] = None) -> str:
        return self._image_container(container)["image"]

    def image_field_path(self, container: Optional[str] = None) -> str:
        selected = self._image_container(container)
        return f"{'.'.join(CONTAINERS_PATH)}[{selected.get('name', 0)}].image"

    def with_image(
        self, image_ref: str, container: Optional[str] = None
    ) -> DeploymentDescriptor:
        document = copy.deepcopy(self.document)
        replaced = DeploymentDescriptor(kind=self.kind, name=self.name, document=document)
        replaced._image_container(container)["image"] = image_ref
        return replaced

    def _image_container(self, container: Optional[str]) -> dict[str, Any]:
        if self.kind is not DescriptorKind.DEPLOYMENT:
            raise DescriptorFieldNotFound(
                f"{self.kind.value} '{self.name}' has no image reference field"
            )

        node: Any = self.document
        for depth, key in enumerate(CONTAINERS_PATH):
            if not isinstance(node, dict) or key not in node:
                missing = ".".join(CONTAINERS_PATH[: depth + 1])
                raise DescriptorFieldNotFound(
                    f"Deployment '{self.name}' has no field {missing}"
                )
            node = node[key]

        candidates = [c for c in node or [] if isinstance(c, dict)] if isinstance(node, list) else []
        if container:
            matches = [c for c in candidates if c.get("name") == container]
        elif len(candidates) == 1:
            matches = candidates
        else:
            matches = [c for c in candidates if c.get("name") == self.name]

        if len(matches) != 1:
            wanted = container or self.name
            raise DescriptorFieldNotFound(
                f"Deployment '{self.name}' has no unique container '{wanted}' "
                f"({len(candidates)} containers declared)"
            )

        selected = matches[0]
        if not isinstance(selected.get("image"), str):
            raise DescriptorFieldNotFound(
                f"Container '{selected.get('name')}' in '{self.name}' has no image field"
            )
        return selected


@dataclass(frozen=True)
class DescriptorFile:
    """A (possibly multi-document) YAML descriptor file."""

    documents: tuple[Any, ...]

    @staticmethod
    def parse(text: str) -> DescriptorFile:
        try:
            documents = tuple(d for d in yaml.safe_load_all(text) if d is not None)
        except yaml.YAMLError as e:
            raise DescriptorFieldNotFound(f"Descriptor is not valid YAML: {e}") from e
        return DescriptorFile(documents=documents)

    @property
    def descriptors(self) -> list[DeploymentDescriptor]:
        result = []
        for document in self.documents:
            try:
                result.append(DeploymentDescriptor.from_document(document))
            except ValueError:
                continue
        return result

    def find(self, name: Optional[str] = None) -> DeploymentDescriptor:
        """Returns the Deployment named `name`, or the only Deployment in the file."""
        deployments = [
            d for d in self.descriptors if d.kind is DescriptorKind.DEPLOYMENT
        ]
        if name:
            deployments = [d for d in deployments if d.name == name]
        if len(deployments) != 1:
            raise DescriptorFieldNotFound(
                f"Expected exactly one Deployment{f' named {name!r}' if name else ''}, "
                f"found {len(deployments)}"
            )
        return deployments[0]

    def with_image(
        self,
        image_ref: str,
        name: Optional[str] = None,
        container: Optional[str] = None,
    ) -> DescriptorFile:
        target = self.find(name)
        replaced = target.with_image(image_ref, container)
        documents = tuple(
            replaced.document if document is target.document else document
            for document in self.documents
        )
        return DescriptorFile(documents=documents)

    def dump(self) -> str:
        return yaml.safe_dump_all(
            list(self.documents), sort_keys=False, default_flow_style=False
        )
