"""
Composition Root

Architectural Intent:
- Dependency injection composition root for the Shipyard application
- Single place where all adapters and services are wired together
- No adapter instantiation should occur outside this module (except tests)

Design Decisions:
- Uses a simple dataclass container instead of a DI framework
- Factory function creates and wires all dependencies from ShipyardConfig
- Ports can be overridden (in-memory remote, fake cluster) for tests and demos
- Lazy initialization for optional components (OTEL, SQLite store)
"""

from dataclasses import dataclass
from typing import Optional

from shipyard.application.orchestration.pipeline_coordinator import (
    PipelineCoordinator,
    PipelineSettings,
)
from shipyard.application.services.approval_gate import ApprovalGate
from shipyard.application.services.cluster_deployer import ClusterDeployer
from shipyard.application.services.tag_propagator import TagPropagator
from shipyard.application.services.version_control import VersionControlClient
from shipyard.application.use_cases.rollback_deployment import RollbackDeployment
from shipyard.domain.ports.cluster_port import ClusterPort
from shipyard.domain.ports.repository_port import RepositoryPort
from shipyard.infrastructure.adapters.git_adapter import GitAdapter
from shipyard.infrastructure.adapters.in_memory_repository import (
    InMemoryRepositoryAdapter,
)
from shipyard.infrastructure.adapters.kubernetes_adapter import KubernetesAdapter
from shipyard.infrastructure.adapters.slack_adapter import SlackAdapter
from shipyard.infrastructure.config import ShipyardConfig
from shipyard.infrastructure.event_bus import EventBus
from shipyard.infrastructure.repositories.sqlite_run_store import SQLiteRunStore
from shipyard.infrastructure.telemetry.otel_exporter import OTELConfig, OTELExporter


@dataclass
class ShipyardContainer:
    """DI container holding all wired dependencies."""

    config: ShipyardConfig
    event_bus: EventBus
    repository: RepositoryPort
    cluster: ClusterPort
    vcs: VersionControlClient
    propagator: TagPropagator
    approval_gate: ApprovalGate
    deployer: ClusterDeployer
    coordinator: PipelineCoordinator
    rollback: RollbackDeployment
    notifier: SlackAdapter
    telemetry: OTELExporter
    run_store: Optional[SQLiteRunStore] = None

    async def start(self) -> None:
        await self.telemetry.initialize()
        await self.approval_gate.start()

    async def stop(self) -> None:
        await self.coordinator.shutdown()
        await self.approval_gate.stop()
        await self.telemetry.export()
        if self.run_store is not None:
            self.run_store.close()


def create_repository(config: ShipyardConfig) -> RepositoryPort:
    if config.vcs.backend == "memory":
        return InMemoryRepositoryAdapter()
    if config.vcs.backend != "git":
        raise ValueError(f"Unknown VCS backend: {config.vcs.backend!r}")
    return GitAdapter(
        author_name=config.vcs.author_name, author_email=config.vcs.author_email
    )


def pipeline_settings(config: ShipyardConfig) -> PipelineSettings:
    return PipelineSettings(
        application_repository=config.application.url,
        configuration_repository=config.configuration.url,
        workspace=config.configuration.workspace,
        descriptor_path=config.configuration.descriptor_path,
        application_branch=config.application.trigger_branch,
        configuration_branch=config.configuration.trigger_branch,
        deployment_name=config.configuration.deployment_name or None,
        container=config.configuration.container or None,
        required_approvals=config.approval.required_count,
        approval_timeout_seconds=config.approval.timeout_seconds,
        rollout_timeout_seconds=config.rollout.timeout_seconds,
    )


def create_container(
    config: Optional[ShipyardConfig] = None,
    repository: Optional[RepositoryPort] = None,
    cluster: Optional[ClusterPort] = None,
    persist: bool = True,
) -> ShipyardContainer:
    """Create and wire all dependencies."""
    config = config or ShipyardConfig()
    event_bus = EventBus()

    repository = repository or create_repository(config)
    cluster = cluster or KubernetesAdapter(
        namespace=config.cluster.namespace,
        kubeconfig=config.cluster.kubeconfig,
        context=config.cluster.context,
    )

    vcs = VersionControlClient(
        repository,
        branch=config.configuration.trigger_branch,
        sync_attempts=config.vcs.sync_attempts,
        push_attempts=config.vcs.push_attempts,
        backoff_seconds=config.vcs.backoff_seconds,
    )
    propagator = TagPropagator(
        vcs,
        config.configuration.workspace,
        descriptor_name=config.configuration.deployment_name or None,
        container=config.configuration.container or None,
    )
    approval_gate = ApprovalGate(config.approval.check_interval_seconds)
    deployer = ClusterDeployer(cluster, config.rollout.poll_interval_seconds)
    coordinator = PipelineCoordinator(
        pipeline_settings(config), vcs, propagator, approval_gate, deployer, event_bus
    )

    notifier = SlackAdapter(config.notifications.slack_webhook_url)
    notifier.subscribe(event_bus)

    telemetry = OTELExporter(
        OTELConfig(endpoint=config.telemetry.endpoint, insecure=config.telemetry.insecure)
    )
    telemetry.subscribe(event_bus)

    run_store = None
    if persist and config.store.path:
        run_store = SQLiteRunStore(config.store.path)
        run_store.connect()
        run_store.subscribe(event_bus)

    return ShipyardContainer(
        config=config,
        event_bus=event_bus,
        repository=repository,
        cluster=cluster,
        vcs=vcs,
        propagator=propagator,
        approval_gate=approval_gate,
        deployer=deployer,
        coordinator=coordinator,
        rollback=RollbackDeployment(coordinator),
        notifier=notifier,
        telemetry=telemetry,
        run_store=run_store,
    )
