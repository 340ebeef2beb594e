"""Shared fixtures: an in-memory configuration repository and a scripted cluster."""

import pytest

from shipyard.application.orchestration.pipeline_coordinator import (
    PipelineCoordinator,
    PipelineSettings,
)
from shipyard.application.services.approval_gate import ApprovalGate
from shipyard.application.services.cluster_deployer import ClusterDeployer
from shipyard.application.services.tag_propagator import TagPropagator
from shipyard.application.services.version_control import VersionControlClient
from shipyard.infrastructure.adapters.in_memory_repository import (
    InMemoryRemote,
    InMemoryRepositoryAdapter,
)
from shipyard.infrastructure.event_bus import EventBus

from pipeline_fixtures import (
    APP_REPO,
    CONFIG_REPO,
    DESCRIPTOR_PATH,
    DESCRIPTOR_YAML,
    FakeCluster,
)


@pytest.fixture
def remote():
    return InMemoryRemote({DESCRIPTOR_PATH: DESCRIPTOR_YAML})


@pytest.fixture
def repository(remote):
    return InMemoryRepositoryAdapter({CONFIG_REPO: remote})


@pytest.fixture
def workspace(tmp_path):
    return str(tmp_path / "config-repo")


@pytest.fixture
def vcs(repository):
    return VersionControlClient(repository, backoff_seconds=0.001)


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def make_coordinator(vcs, workspace, cluster):
    """Builds a coordinator over the in-memory repository and fake cluster."""

    def _make(required_approvals=0, approval_timeout=5.0, rollout_timeout=1.0, **overrides):
        settings = PipelineSettings(
            application_repository=APP_REPO,
            configuration_repository=CONFIG_REPO,
            workspace=workspace,
            descriptor_path=DESCRIPTOR_PATH,
            required_approvals=required_approvals,
            approval_timeout_seconds=approval_timeout,
            rollout_timeout_seconds=rollout_timeout,
            **overrides,
        )
        return PipelineCoordinator(
            settings,
            vcs,
            TagPropagator(vcs, workspace),
            ApprovalGate(check_interval_seconds=0.01),
            ClusterDeployer(cluster, poll_interval_seconds=0.01),
            EventBus(),
        )

    return _make
