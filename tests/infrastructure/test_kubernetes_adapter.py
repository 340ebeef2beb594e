"""Tests for KubernetesAdapter with mocked API clients."""

import pytest
from types import SimpleNamespace
from unittest.mock import MagicMock

from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError

from shipyard.domain.entities.descriptor import DescriptorFile
from shipyard.domain.errors import ApplyRejected, RemoteUnreachable
from shipyard.infrastructure.adapters.kubernetes_adapter import KubernetesAdapter

from pipeline_fixtures import DESCRIPTOR_YAML


def _descriptors():
    deployment, service = DescriptorFile.parse(DESCRIPTOR_YAML).descriptors
    return deployment, service


def _adapter():
    apps, core = MagicMock(), MagicMock()
    return KubernetesAdapter(namespace="default", apps_api=apps, core_api=core), apps, core


def _deployment(replicas=3, ready=2, updated=3, conditions=(), generation=2, observed=2):
    return SimpleNamespace(
        metadata=SimpleNamespace(generation=generation),
        spec=SimpleNamespace(replicas=replicas),
        status=SimpleNamespace(
            ready_replicas=ready,
            updated_replicas=updated,
            observed_generation=observed,
            conditions=list(conditions),
        ),
    )


class TestApply:
    @pytest.mark.asyncio
    async def test_existing_deployment_is_patched(self):
        adapter, apps, _ = _adapter()
        deployment, _ = _descriptors()

        assert await adapter.apply(deployment) == "configured"

        apps.read_namespaced_deployment.assert_called_once_with("app", "prod")
        apps.patch_namespaced_deployment.assert_called_once_with(
            "app", "prod", deployment.document
        )
        apps.create_namespaced_deployment.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_service_is_created(self):
        adapter, _, core = _adapter()
        _, service = _descriptors()
        core.read_namespaced_service.side_effect = ApiException(status=404, reason="Not Found")

        assert await adapter.apply(service) == "created"
        core.create_namespaced_service.assert_called_once_with("prod", service.document)

    @pytest.mark.asyncio
    async def test_invalid_descriptor_is_rejected(self):
        adapter, apps, _ = _adapter()
        deployment, _ = _descriptors()
        apps.patch_namespaced_deployment.side_effect = ApiException(
            status=422, reason="Unprocessable Entity"
        )

        with pytest.raises(ApplyRejected) as exc:
            await adapter.apply(deployment)
        assert exc.value.descriptor_name == "Deployment/app"

    @pytest.mark.asyncio
    async def test_conflict_is_transient(self):
        adapter, apps, _ = _adapter()
        deployment, _ = _descriptors()
        apps.patch_namespaced_deployment.side_effect = ApiException(
            status=409, reason="Conflict"
        )

        with pytest.raises(RemoteUnreachable, match="409"):
            await adapter.apply(deployment)

    @pytest.mark.asyncio
    async def test_server_error_is_unreachable(self):
        adapter, apps, _ = _adapter()
        deployment, _ = _descriptors()
        apps.read_namespaced_deployment.side_effect = ApiException(status=503, reason="Unavailable")

        with pytest.raises(RemoteUnreachable):
            await adapter.apply(deployment)

    @pytest.mark.asyncio
    async def test_connection_error_is_unreachable(self):
        adapter, apps, _ = _adapter()
        deployment, _ = _descriptors()
        apps.read_namespaced_deployment.side_effect = MaxRetryError(None, "/apis", "refused")

        with pytest.raises(RemoteUnreachable):
            await adapter.apply(deployment)


class TestGetStatus:
    @pytest.mark.asyncio
    async def test_maps_status(self):
        adapter, apps, _ = _adapter()
        condition = SimpleNamespace(type="Progressing", status="True", reason="NewReplicaSetAvailable")
        apps.read_namespaced_deployment_status.return_value = _deployment(conditions=[condition])

        state = await adapter.get_status("app")

        apps.read_namespaced_deployment_status.assert_called_once_with("app", "default")
        assert state.desired_replicas == 3
        assert state.ready_replicas == 2
        assert state.observed_replicas == 3
        assert state.conditions == ("Progressing=True (NewReplicaSetAvailable)",)
        assert state.generation_observed is True

    @pytest.mark.asyncio
    async def test_update_not_yet_observed(self):
        adapter, apps, _ = _adapter()
        apps.read_namespaced_deployment_status.return_value = _deployment(
            ready=3, updated=3, generation=3, observed=2
        )

        state = await adapter.get_status("app")

        assert state.generation_observed is False

    @pytest.mark.asyncio
    async def test_old_replicas_still_ready(self):
        adapter, apps, _ = _adapter()
        apps.read_namespaced_deployment_status.return_value = _deployment(ready=3, updated=0)

        state = await adapter.get_status("app")

        assert (state.ready_replicas, state.observed_replicas) == (3, 0)

    @pytest.mark.asyncio
    async def test_reads_from_namespace_applied_to(self):
        adapter, apps, _ = _adapter()
        deployment, _ = _descriptors()
        apps.read_namespaced_deployment_status.return_value = _deployment(ready=None)

        await adapter.apply(deployment)
        state = await adapter.get_status("app")

        apps.read_namespaced_deployment_status.assert_called_once_with("app", "prod")
        assert state.ready_replicas == 0

    @pytest.mark.asyncio
    async def test_missing_deployment_is_unreachable(self):
        adapter, apps, _ = _adapter()
        apps.read_namespaced_deployment_status.side_effect = ApiException(status=404)

        with pytest.raises(RemoteUnreachable):
            await adapter.get_status("app")
