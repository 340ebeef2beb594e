"""
Pipeline Coordinator

Architectural Intent:
- Owns every PipelineRun: creates it on a trigger, sequences its stages, and is
  the only writer of its state
- CI: build-reference-check -> tag-propagate
- CD: [approval-gate] -> apply -> wait-for-rollout
- Fail-fast: the first failing stage ends the run, remaining stages are skipped
- Run status and an append-only stage-event feed are exposed to monitoring
  collaborators through get_status() and subscribe()

Concurrency:
- Each run executes on its own asyncio task; stages within a run are sequential
- cancel(run_id) sets the run's cancel event; every blocking stage races against it
- CD runs serialize apply + wait-for-rollout on a descriptor lock, and re-read the
  descriptor from a fresh sync right before applying, so the applied image is
  never older than the commit that triggered the run
"""

from __future__ import annotations
import asyncio
import logging
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from shipyard.application.dtos.pipeline_dtos import TriggerEvent
from shipyard.application.orchestration.dag_orchestrator import (
    DAGOrchestrator,
    OrchestrationError,
    StepFn,
)
from shipyard.application.services.approval_gate import ApprovalGate
from shipyard.application.services.cluster_deployer import ClusterDeployer
from shipyard.application.services.tag_propagator import TagPropagator
from shipyard.application.services.version_control import VersionControlClient
from shipyard.domain.entities.approval_request import ApprovalState
from shipyard.domain.entities.descriptor import DeploymentDescriptor, DescriptorFile
from shipyard.domain.entities.pipeline_run import (
    PipelineKind,
    PipelineRun,
    StageEvent,
    StageOutcome,
)
from shipyard.domain.errors import (
    ApprovalExpired,
    ApprovalRejected,
    DescriptorFieldNotFound,
    InvalidArtifact,
    PipelineError,
    RolloutTimeout,
    RunCancelled,
    RunNotFound,
)
from shipyard.domain.events.event_base import DomainEvent
from shipyard.domain.ports.event_bus_port import EventBusPort
from shipyard.domain.ports.repository_port import RepositoryState
from shipyard.domain.value_objects.build_artifact import BuildArtifact

logger = logging.getLogger(__name__)

# id of the run whose task is executing; read by the log handler
current_run_id: ContextVar[Optional[str]] = ContextVar("shipyard_run_id", default=None)

CI_STAGES = ("build-reference-check", "tag-propagate")
CD_STAGES = ("approval-gate", "apply", "wait-for-rollout")


@dataclass(frozen=True)
class PipelineSettings:
    application_repository: str
    configuration_repository: str
    workspace: str
    descriptor_path: str
    application_branch: str = "main"
    configuration_branch: str = "main"
    deployment_name: Optional[str] = None
    container: Optional[str] = None
    required_approvals: int = 0
    approval_timeout_seconds: float = 3600.0
    rollout_timeout_seconds: float = 300.0
    chain_cd: bool = True


class PipelineCoordinator:
    def __init__(
        self,
        settings: PipelineSettings,
        vcs: VersionControlClient,
        propagator: TagPropagator,
        approval_gate: ApprovalGate,
        deployer: ClusterDeployer,
        event_bus: EventBusPort,
    ):
        self.settings = settings
        self.vcs = vcs
        self.propagator = propagator
        self.approval_gate = approval_gate
        self.deployer = deployer
        self.event_bus = event_bus
        self._runs: dict[str, PipelineRun] = {}
        self._published: dict[str, int] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._stage_started: dict[str, datetime] = {}
        self._descriptor_lock = asyncio.Lock()
        self._lock_holder: Optional[str] = None

    # -- Triggers -------------------------------------------------------------

    async def handle_trigger(
        self, trigger: TriggerEvent, artifact: Optional[BuildArtifact] = None
    ) -> Optional[PipelineRun]:
        """Routes a push notification to the CI or CD pipeline.

        Returns the started run, or None when the push is not a trigger.
        """
        s = self.settings
        if (
            trigger.repository == s.application_repository
            and trigger.branch == s.application_branch
        ):
            if artifact is None:
                raise InvalidArtifact(
                    f"CI trigger for {trigger.repository}@{trigger.commit_sha} has no build artifact"
                )
            return await self.start_ci(artifact, trigger)

        if (
            trigger.repository == s.configuration_repository
            and trigger.branch == s.configuration_branch
        ):
            return await self.start_cd(trigger)

        logger.info(
            "Ignoring push to %s@%s: not a trigger branch", trigger.repository, trigger.branch
        )
        return None

    async def start_ci(
        self, artifact: BuildArtifact, trigger: Optional[TriggerEvent] = None
    ) -> PipelineRun:
        run = PipelineRun.create(
            PipelineKind.CI,
            image_ref=str(artifact),
            trigger=trigger.to_dict() if trigger else {},
        )
        context = {"artifact": artifact, "trigger": trigger}
        steps: list[tuple[str, StepFn]] = [
            ("build-reference-check", self._build_reference_check),
            ("tag-propagate", self._tag_propagate),
        ]
        return self._launch(run, steps, context)

    async def start_cd(self, trigger: Optional[TriggerEvent] = None) -> PipelineRun:
        run = PipelineRun.create(
            PipelineKind.CD, trigger=trigger.to_dict() if trigger else {}
        )
        steps: list[tuple[str, StepFn]] = []
        if self.settings.required_approvals > 0:
            steps.append(("approval-gate", self._approval_gate))
        steps.append(("apply", self._apply))
        steps.append(("wait-for-rollout", self._wait_for_rollout))
        return self._launch(run, steps, {})

    # -- Queries --------------------------------------------------------------

    def get_status(self, run_id: str) -> PipelineRun:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFound(f"Run {run_id} not found")
        return run

    def list_runs(self) -> list[PipelineRun]:
        return sorted(
            self._runs.values(),
            key=lambda r: r.started_at or datetime.max.replace(tzinfo=UTC),
        )

    def events(self, run_id: str) -> list[StageEvent]:
        return list(self.get_status(run_id).stage_events)

    def subscribe(self, handler: Callable[[DomainEvent], Awaitable[None]]) -> None:
        self.event_bus.subscribe_all(handler)

    async def wait(self, run_id: str) -> PipelineRun:
        """Blocks until the run is terminal and returns its final state."""
        self.get_status(run_id)
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return self.get_status(run_id)

    # -- Control --------------------------------------------------------------

    async def cancel(self, run_id: str) -> PipelineRun:
        run = self.get_status(run_id)
        if run.is_terminal:
            return run
        logger.info("Cancelling run %s in stage %s", run_id, run.current_stage or "-")
        self._cancel_events[run_id].set()
        return run

    async def shutdown(self) -> None:
        active = [run_id for run_id, run in self._runs.items() if not run.is_terminal]
        for run_id in active:
            await self.cancel(run_id)
        tasks = [self._tasks[r] for r in active if r in self._tasks]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- Run execution --------------------------------------------------------

    def _launch(
        self,
        run: PipelineRun,
        steps: list[tuple[str, StepFn]],
        context: dict[str, Any],
    ) -> PipelineRun:
        self._runs[run.run_id] = run
        self._published[run.run_id] = 0
        self._cancel_events[run.run_id] = asyncio.Event()
        context = {**context, "run_id": run.run_id}
        self._tasks[run.run_id] = asyncio.create_task(
            self._execute(run.run_id, steps, context), name=run.run_id
        )
        logger.info("Created %s run %s", run.kind.value, run.run_id)
        return run

    async def _execute(
        self,
        run_id: str,
        steps: list[tuple[str, StepFn]],
        context: dict[str, Any],
    ) -> None:
        current_run_id.set(run_id)
        cancel_event = self._cancel_events[run_id]
        if cancel_event.is_set():
            await self._update(run_id, lambda r: r.cancel(message="Cancelled before start"))
            return

        await self._update(run_id, lambda r: r.start())

        async def on_start(stage: str) -> None:
            self._stage_started[run_id] = datetime.now(UTC)
            await self._update(run_id, lambda r: r.enter_stage(stage))

        async def on_end(stage: str, result: Any, error: Optional[BaseException]) -> None:
            if error is None:
                outcome, detail = StageOutcome.SUCCEEDED, result or {}
            elif isinstance(error, PipelineError) and error.cancels_run:
                outcome, detail = StageOutcome.CANCELLED, error.to_dict()
            elif isinstance(error, PipelineError):
                outcome, detail = StageOutcome.FAILED, error.to_dict()
            else:
                outcome = StageOutcome.FAILED
                detail = {"reason": "InternalError", "message": str(error)}
            await self._record_stage(run_id, stage, outcome, detail)

        orchestrator = DAGOrchestrator.chain(
            [(name, self._cancellable(fn)) for name, fn in steps],
            on_step_start=on_start,
            on_step_end=on_end,
        )

        try:
            await orchestrator.execute(context)
        except OrchestrationError as e:
            for stage in e.skipped:
                await self._record_stage(run_id, stage, StageOutcome.SKIPPED, {})
            await self._finish_with_error(run_id, e.cause or e)
            return
        finally:
            self._release_descriptor(run_id)
            self._stage_started.pop(run_id, None)

        await self._update(run_id, lambda r: r.succeed())
        logger.info("Run %s succeeded", run_id)

    def _cancellable(self, fn: StepFn) -> StepFn:
        """Wraps a stage so that cancelling the run interrupts it."""

        async def stage(context: dict[str, Any], results: dict[str, Any]) -> Any:
            cancel_event = self._cancel_events[context["run_id"]]
            if cancel_event.is_set():
                raise RunCancelled("Run cancelled")

            work = asyncio.ensure_future(fn(context, results))
            cancelled = asyncio.ensure_future(cancel_event.wait())
            try:
                await asyncio.wait({work, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                cancelled.cancel()

            if not work.done():
                work.cancel()
                try:
                    await work
                except asyncio.CancelledError:
                    pass
                raise RunCancelled("Run cancelled")

            result = work.result()
            if cancel_event.is_set():
                raise RunCancelled("Run cancelled")
            return result

        return stage

    async def _finish_with_error(self, run_id: str, error: BaseException) -> None:
        if isinstance(error, PipelineError):
            if error.cancels_run:
                await self._update(run_id, lambda r: r.cancel(error.reason, error.message))
                logger.warning("Run %s cancelled: %s", run_id, error.message)
            else:
                await self._update(
                    run_id, lambda r: r.fail(error.reason, error.message, error.to_dict())
                )
                logger.error("Run %s failed (%s): %s", run_id, error.reason, error.message)
            return

        logger.error("Run %s failed with unexpected error", run_id, exc_info=error)
        await self._update(run_id, lambda r: r.fail("InternalError", str(error)))

    async def _record_stage(
        self, run_id: str, stage: str, outcome: StageOutcome, detail: dict[str, Any]
    ) -> None:
        now = datetime.now(UTC)
        started = now
        if outcome is not StageOutcome.SKIPPED:
            started = self._stage_started.get(run_id, now)
        event = StageEvent(
            run_id=run_id,
            stage=stage,
            outcome=outcome,
            started_at=started,
            ended_at=now,
            detail=dict(detail),
        )
        await self._update(run_id, lambda r: r.record_stage(event))

    async def _update(
        self, run_id: str, transition: Callable[[PipelineRun], PipelineRun]
    ) -> PipelineRun:
        run = transition(self._runs[run_id])
        self._runs[run_id] = run
        new_events = list(run.domain_events[self._published[run_id]:])
        self._published[run_id] = len(run.domain_events)
        if new_events:
            await self.event_bus.publish(new_events)
        return run

    def _release_descriptor(self, run_id: str) -> None:
        if self._lock_holder == run_id:
            self._lock_holder = None
            self._descriptor_lock.release()

    # -- CI stages ------------------------------------------------------------

    async def _build_reference_check(
        self, context: dict[str, Any], results: dict[str, Any]
    ) -> dict[str, Any]:
        s = self.settings
        artifact: BuildArtifact = context["artifact"]
        image_ref = artifact.image_ref
        trigger: Optional[TriggerEvent] = context.get("trigger")
        if trigger is not None and (
            trigger.repository != s.application_repository
            or trigger.branch != s.application_branch
        ):
            raise InvalidArtifact(
                f"Build triggered from {trigger.repository}@{trigger.branch}, expected "
                f"{s.application_repository}@{s.application_branch}"
            )
        if (
            artifact.source_repository
            and artifact.source_repository != s.application_repository
        ):
            raise InvalidArtifact(
                f"Artifact built from {artifact.source_repository}, expected "
                f"{s.application_repository}"
            )
        await self._update(context["run_id"], lambda r: r.with_image_ref(str(image_ref)))
        return {"image_ref": str(image_ref), "digest": artifact.digest}

    async def _tag_propagate(
        self, context: dict[str, Any], results: dict[str, Any]
    ) -> dict[str, Any]:
        s = self.settings
        image_ref = results["build-reference-check"]["image_ref"]
        async with self.vcs.workspace_lock(s.workspace):
            await self.vcs.sync(s.configuration_repository, s.workspace)
            commit = await self.propagator.propagate(s.descriptor_path, image_ref)

        detail: dict[str, Any] = {
            "committed": commit.committed,
            "sha": commit.sha,
            "attempts": commit.attempts,
        }
        if commit.committed and s.chain_cd:
            downstream = await self.start_cd(
                TriggerEvent(
                    repository=s.configuration_repository,
                    branch=s.configuration_branch,
                    commit_sha=commit.sha,
                )
            )
            detail["triggered_run_id"] = downstream.run_id
        return detail

    # -- CD stages ------------------------------------------------------------

    async def _approval_gate(
        self, context: dict[str, Any], results: dict[str, Any]
    ) -> dict[str, Any]:
        run_id = context["run_id"]
        required = self.settings.required_approvals
        # Approvers see the image that is about to go out
        _, _, _, image = await self._read_descriptor()
        await self._update(run_id, lambda r: r.with_image_ref(image))
        deadline = datetime.now(UTC) + timedelta(
            seconds=self.settings.approval_timeout_seconds
        )
        request = self.approval_gate.request_approval(run_id, required, deadline)
        await self._update(
            run_id, lambda r: r.await_approval(request.request_id, required, deadline)
        )

        try:
            decided = await self.approval_gate.wait_for_decision(
                request.request_id, self._cancel_events[run_id]
            )
        finally:
            self.approval_gate.archive(request.request_id)

        if decided.state is ApprovalState.APPROVED:
            await self._update(run_id, lambda r: r.resume())
            return {
                "request_id": decided.request_id,
                "approvals": sorted(decided.approvals),
            }
        if decided.state is ApprovalState.REJECTED:
            raise ApprovalRejected(
                f"Deployment rejected by {decided.rejected_by}",
                approver=decided.rejected_by,
            )
        if decided.state is ApprovalState.EXPIRED:
            raise ApprovalExpired(
                f"Approval {decided.request_id} expired with "
                f"{len(decided.approvals)}/{decided.required_count} approvals"
            )
        raise RunCancelled("Run cancelled while awaiting approval")

    async def _apply(
        self, context: dict[str, Any], results: dict[str, Any]
    ) -> dict[str, Any]:
        run_id = context["run_id"]

        await self._descriptor_lock.acquire()
        self._lock_holder = run_id

        # Fresh read: never apply a cached descriptor
        state, descriptor_file, deployment, image = await self._read_descriptor()
        await self._update(run_id, lambda r: r.with_image_ref(image))

        applied = await self.deployer.apply(descriptor_file.descriptors)
        return {
            "config_head": state.head,
            "image": image,
            "deployment": deployment.name,
            "desired_replicas": deployment.replicas,
            "applied": list(applied.applied),
        }

    async def _read_descriptor(
        self,
    ) -> tuple[RepositoryState, DescriptorFile, DeploymentDescriptor, str]:
        s = self.settings
        async with self.vcs.workspace_lock(s.workspace):
            state = await self.vcs.sync(s.configuration_repository, s.workspace)
            path = Path(s.workspace) / s.descriptor_path
            if not path.exists():
                raise DescriptorFieldNotFound(f"Descriptor {s.descriptor_path} does not exist")
            text = path.read_text()
        descriptor_file = DescriptorFile.parse(text)
        deployment = descriptor_file.find(s.deployment_name)
        return state, descriptor_file, deployment, deployment.image(s.container)

    async def _wait_for_rollout(
        self, context: dict[str, Any], results: dict[str, Any]
    ) -> dict[str, Any]:
        run_id = context["run_id"]
        name = results["apply"]["deployment"]
        status = await self.deployer.wait_for_rollout(
            name,
            self.settings.rollout_timeout_seconds,
            self._cancel_events[run_id],
        )
        if self._cancel_events[run_id].is_set():
            raise RunCancelled("Run cancelled during rollout")
        if not status.terminal:
            raise RolloutTimeout(
                f"Rollout of {name} not ready after "
                f"{self.settings.rollout_timeout_seconds:g}s ({status})",
                status=status,
            )
        return status.to_dict()


__all__ = [
    "PipelineCoordinator",
    "PipelineSettings",
    "CI_STAGES",
    "CD_STAGES",
]
