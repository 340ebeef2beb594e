"""Tests for deployment descriptors and path-addressed image replacement."""

import pytest
import yaml

from shipyard.domain.entities.descriptor import (
    DeploymentDescriptor,
    DescriptorFile,
    DescriptorKind,
)
from shipyard.domain.errors import DescriptorFieldNotFound

from pipeline_fixtures import DESCRIPTOR_YAML


def _deployment(containers):
    return DeploymentDescriptor.from_document(
        {
            "kind": "Deployment",
            "metadata": {"name": "app"},
            "spec": {"template": {"spec": {"containers": containers}}},
        }
    )


class TestDeploymentDescriptor:
    def test_from_document(self):
        descriptor = _deployment([{"name": "app", "image": "org/app:1"}])
        assert descriptor.kind is DescriptorKind.DEPLOYMENT
        assert descriptor.name == "app"
        assert descriptor.replicas == 1

    def test_unsupported_kind_rejected(self):
        with pytest.raises(ValueError, match="Unsupported descriptor kind"):
            DeploymentDescriptor.from_document({"kind": "ConfigMap", "metadata": {"name": "x"}})

    def test_missing_name_rejected(self):
        with pytest.raises(ValueError, match="metadata.name"):
            DeploymentDescriptor.from_document({"kind": "Deployment", "metadata": {}})

    def test_single_container_selected_without_name(self):
        descriptor = _deployment([{"name": "web", "image": "org/web:3"}])
        assert descriptor.image() == "org/web:3"
        assert descriptor.image_field_path() == "spec.template.spec.containers[web].image"

    def test_container_named_like_descriptor_selected(self):
        descriptor = _deployment(
            [{"name": "proxy", "image": "org/proxy:7"}, {"name": "app", "image": "org/app:1"}]
        )
        assert descriptor.image() == "org/app:1"

    def test_ambiguous_containers_rejected(self):
        descriptor = _deployment(
            [{"name": "a", "image": "org/a:1"}, {"name": "b", "image": "org/b:1"}]
        )
        with pytest.raises(DescriptorFieldNotFound, match="no unique container"):
            descriptor.image()

    def test_missing_path_rejected(self):
        descriptor = DeploymentDescriptor.from_document(
            {"kind": "Deployment", "metadata": {"name": "app"}, "spec": {}}
        )
        with pytest.raises(DescriptorFieldNotFound, match="spec.template"):
            descriptor.image()

    def test_with_image_does_not_mutate_original(self):
        descriptor = _deployment([{"name": "app", "image": "org/app:1"}])
        replaced = descriptor.with_image("org/app:2")
        assert replaced.image() == "org/app:2"
        assert descriptor.image() == "org/app:1"

    def test_service_has_no_image_field(self):
        service = DeploymentDescriptor.from_document(
            {"kind": "Service", "metadata": {"name": "app"}, "spec": {"ports": [{"port": 80, "targetPort": 8080}]}}
        )
        assert service.target_port == 8080
        with pytest.raises(DescriptorFieldNotFound):
            service.image()


class TestDescriptorFile:
    def test_parse_multi_document(self):
        descriptor_file = DescriptorFile.parse(DESCRIPTOR_YAML)
        kinds = [d.kind for d in descriptor_file.descriptors]
        assert kinds == [DescriptorKind.DEPLOYMENT, DescriptorKind.SERVICE]
        assert descriptor_file.find().replicas == 3

    def test_replacement_touches_only_the_addressed_field(self):
        updated = DescriptorFile.parse(DESCRIPTOR_YAML).with_image("org/app:42").dump()
        documents = list(yaml.safe_load_all(updated))
        containers = documents[0]["spec"]["template"]["spec"]["containers"]

        assert containers[0]["image"] == "org/app:42"
        assert containers[1]["image"] == "org/proxy:7"
        # an identical string elsewhere in the document is not an image field
        assert documents[0]["metadata"]["labels"]["image"] == "org/app:1"
        assert documents[1]["spec"]["ports"][0]["targetPort"] == 8080

    def test_explicit_container(self):
        updated = DescriptorFile.parse(DESCRIPTOR_YAML).with_image(
            "org/proxy:8", container="sidecar"
        )
        assert updated.find().image("sidecar") == "org/proxy:8"
        assert updated.find().image() == "org/app:1"

    def test_find_by_missing_name(self):
        with pytest.raises(DescriptorFieldNotFound, match="named 'other'"):
            DescriptorFile.parse(DESCRIPTOR_YAML).find("other")

    def test_invalid_yaml(self):
        with pytest.raises(DescriptorFieldNotFound, match="not valid YAML"):
            DescriptorFile.parse("kind: [unclosed")
