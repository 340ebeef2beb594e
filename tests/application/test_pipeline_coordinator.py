"""
Pipeline Coordinator Tests

Runs the CI and CD pipelines against the in-memory configuration repository and
a scripted cluster.
"""

import asyncio

import pytest

from shipyard.application.dtos.pipeline_dtos import TriggerEvent
from shipyard.domain.entities.descriptor import DescriptorFile
from shipyard.domain.entities.pipeline_run import RunStatus, StageOutcome
from shipyard.domain.errors import InvalidArtifact, RunNotFound
from shipyard.domain.value_objects.build_artifact import BuildArtifact

from pipeline_fixtures import APP_REPO, CONFIG_REPO, DESCRIPTOR_PATH, YieldingRepository


def _artifact(tag="42", source=APP_REPO):
    return BuildArtifact("org/app", tag, source_repository=source, commit_sha="c0ffee")


def _outcomes(run):
    return [(e.stage, e.outcome) for e in run.stage_events]


async def _until(coordinator, run_id, status, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while coordinator.get_status(run_id).status is not status:
        assert loop.time() < deadline, f"{run_id} never reached {status}"
        await asyncio.sleep(0.01)
    return coordinator.get_status(run_id)


class TestTriggers:
    @pytest.mark.asyncio
    async def test_ci_commit_triggers_cd(self, make_coordinator, remote, cluster):
        coordinator = make_coordinator()

        ci = await coordinator.handle_trigger(
            TriggerEvent(APP_REPO, "main", "c0ffee"), _artifact()
        )
        ci = await coordinator.wait(ci.run_id)

        assert ci.status is RunStatus.SUCCEEDED
        assert _outcomes(ci) == [
            ("build-reference-check", StageOutcome.SUCCEEDED),
            ("tag-propagate", StageOutcome.SUCCEEDED),
        ]
        propagate = ci.stage_events[-1].detail
        assert propagate["committed"] is True
        assert remote.head == propagate["sha"]

        cd = await coordinator.wait(propagate["triggered_run_id"])
        assert cd.status is RunStatus.SUCCEEDED
        assert cd.image_ref == "org/app:42"
        assert cd.trigger["commit_sha"] == propagate["sha"]
        assert [e.stage for e in cd.stage_events] == ["apply", "wait-for-rollout"]
        assert cluster.applied[0].image() == "org/app:42"

    @pytest.mark.asyncio
    async def test_config_push_triggers_cd(self, make_coordinator):
        coordinator = make_coordinator()
        run = await coordinator.handle_trigger(TriggerEvent(CONFIG_REPO, "main", "abc"))

        run = await coordinator.wait(run.run_id)
        assert run.kind.value == "CD"
        assert run.status is RunStatus.SUCCEEDED
        assert run.image_ref == "org/app:1"

    @pytest.mark.asyncio
    async def test_other_branches_are_ignored(self, make_coordinator):
        coordinator = make_coordinator()
        assert await coordinator.handle_trigger(TriggerEvent(APP_REPO, "feature", "x")) is None
        assert await coordinator.handle_trigger(TriggerEvent("git@x:y.git", "main")) is None
        assert coordinator.list_runs() == []

    @pytest.mark.asyncio
    async def test_ci_trigger_needs_artifact(self, make_coordinator):
        with pytest.raises(InvalidArtifact):
            await make_coordinator().handle_trigger(TriggerEvent(APP_REPO, "main"))

    @pytest.mark.asyncio
    async def test_cd_chaining_can_be_disabled(self, make_coordinator, cluster):
        coordinator = make_coordinator(chain_cd=False)
        ci = await coordinator.start_ci(_artifact())
        ci = await coordinator.wait(ci.run_id)

        assert "triggered_run_id" not in ci.stage_events[-1].detail
        assert len(coordinator.list_runs()) == 1
        assert cluster.applied == []


class TestContinuousIntegration:
    @pytest.mark.asyncio
    async def test_foreign_artifact_fails_before_commit(self, make_coordinator, remote):
        coordinator = make_coordinator()
        head = remote.head

        run = await coordinator.start_ci(_artifact(source="git@example.com:org/other.git"))
        run = await coordinator.wait(run.run_id)

        assert run.status is RunStatus.FAILED
        assert run.failure_reason == "InvalidArtifact"
        assert _outcomes(run) == [
            ("build-reference-check", StageOutcome.FAILED),
            ("tag-propagate", StageOutcome.SKIPPED),
        ]
        assert remote.head == head

    @pytest.mark.asyncio
    async def test_build_from_other_branch_fails_before_commit(self, make_coordinator, remote):
        coordinator = make_coordinator()
        head = remote.head

        run = await coordinator.start_ci(
            _artifact(), TriggerEvent(APP_REPO, "feature-x", "c0ffee")
        )
        run = await coordinator.wait(run.run_id)

        assert run.status is RunStatus.FAILED
        assert run.failure_reason == "InvalidArtifact"
        assert "feature-x" in run.failure_message
        assert remote.head == head

    @pytest.mark.asyncio
    async def test_concurrent_builds_share_the_workspace(self, make_coordinator, remote):
        coordinator = make_coordinator(chain_cd=False)
        coordinator.vcs.repository = YieldingRepository({CONFIG_REPO: remote})

        started = [await coordinator.start_ci(_artifact(tag)) for tag in ("41", "42")]
        finished = [await coordinator.wait(run.run_id) for run in started]

        assert [run.status for run in finished] == [RunStatus.SUCCEEDED] * 2
        commits = remote.history[1:]
        assert len(commits) == 2
        for commit in commits:
            image = DescriptorFile.parse(commit.files[DESCRIPTOR_PATH]).find().image()
            assert commit.message == f"Update deployment image to {image}"
        images = {DescriptorFile.parse(c.files[DESCRIPTOR_PATH]).find().image() for c in commits}
        assert images == {"org/app:41", "org/app:42"}

    @pytest.mark.asyncio
    async def test_unchanged_image_commits_nothing(self, make_coordinator, remote):
        coordinator = make_coordinator()
        head = remote.head

        run = await coordinator.start_ci(_artifact(tag="1"))
        run = await coordinator.wait(run.run_id)

        assert run.status is RunStatus.SUCCEEDED
        assert run.stage_events[-1].detail["committed"] is False
        assert remote.head == head
        assert len(coordinator.list_runs()) == 1

    @pytest.mark.asyncio
    async def test_unreachable_remote_fails_run(self, make_coordinator, remote):
        coordinator = make_coordinator()
        remote.fail_next(10)

        run = await coordinator.wait((await coordinator.start_ci(_artifact())).run_id)

        assert run.status is RunStatus.FAILED
        assert run.failure_reason == "RemoteUnreachable"
        assert run.last_successful_stage == "build-reference-check"


class TestContinuousDeployment:
    @pytest.mark.asyncio
    async def test_apply_rejection_skips_rollout(self, make_coordinator, cluster):
        cluster.reject = True
        coordinator = make_coordinator()
        run = await coordinator.wait((await coordinator.start_cd()).run_id)

        assert run.status is RunStatus.FAILED
        assert run.failure_reason == "ApplyRejected"
        assert _outcomes(run) == [
            ("apply", StageOutcome.FAILED),
            ("wait-for-rollout", StageOutcome.SKIPPED),
        ]

    @pytest.mark.asyncio
    async def test_rollout_timeout(self, make_coordinator, cluster):
        cluster.ready_sequence = [1]
        coordinator = make_coordinator(rollout_timeout=0.05)

        run = await coordinator.wait((await coordinator.start_cd()).run_id)

        assert run.status is RunStatus.FAILED
        assert run.failure_reason == "RolloutTimeout"
        assert run.failure_detail["last_status"]["ready_replicas"] == 1
        assert run.last_successful_stage == "apply"

    @pytest.mark.asyncio
    async def test_apply_reads_the_latest_commit(self, make_coordinator, remote, cluster):
        coordinator = make_coordinator()
        text = DescriptorFile.parse(remote.read(DESCRIPTOR_PATH)).with_image("org/app:77").dump()
        remote.write({DESCRIPTOR_PATH: text}, "Manual bump")

        run = await coordinator.wait((await coordinator.start_cd()).run_id)

        assert run.image_ref == "org/app:77"
        assert run.stage_events[0].detail["config_head"] == remote.head
        assert cluster.applied[0].image() == "org/app:77"

    @pytest.mark.asyncio
    async def test_concurrent_cd_runs_are_serialized(self, make_coordinator, cluster):
        coordinator = make_coordinator()
        first = await coordinator.start_cd()
        second = await coordinator.start_cd()

        runs = [await coordinator.wait(first.run_id), await coordinator.wait(second.run_id)]

        assert all(r.status is RunStatus.SUCCEEDED for r in runs)
        assert len(cluster.applied) == 4

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal_failure(self, make_coordinator):
        coordinator = make_coordinator()

        async def explode(descriptors):
            raise RuntimeError("boom")

        coordinator.deployer.apply = explode
        run = await coordinator.wait((await coordinator.start_cd()).run_id)

        assert run.status is RunStatus.FAILED
        assert run.failure_reason == "InternalError"
        assert run.stage_events[0].detail["reason"] == "InternalError"


class TestApprovals:
    @pytest.mark.asyncio
    async def test_approved_run_deploys(self, make_coordinator, cluster):
        coordinator = make_coordinator(required_approvals=2)
        run = await coordinator.start_cd()

        waiting = await _until(coordinator, run.run_id, RunStatus.AWAITING_APPROVAL)
        assert waiting.image_ref == "org/app:1"
        assert cluster.applied == []
        coordinator.approval_gate.record_approval(waiting.approval_request_id, "alice")
        coordinator.approval_gate.record_approval(waiting.approval_request_id, "bob")

        run = await coordinator.wait(run.run_id)
        assert run.status is RunStatus.SUCCEEDED
        assert run.stage_events[0].detail["approvals"] == ["alice", "bob"]
        assert len(cluster.applied) == 2

    @pytest.mark.asyncio
    async def test_rejection_cancels_run(self, make_coordinator, cluster):
        coordinator = make_coordinator(required_approvals=1)
        run = await coordinator.start_cd()

        waiting = await _until(coordinator, run.run_id, RunStatus.AWAITING_APPROVAL)
        coordinator.approval_gate.record_rejection(waiting.approval_request_id, "mallory")

        run = await coordinator.wait(run.run_id)
        assert run.status is RunStatus.CANCELLED
        assert run.failure_reason == "ApprovalRejected"
        assert _outcomes(run) == [
            ("approval-gate", StageOutcome.CANCELLED),
            ("apply", StageOutcome.SKIPPED),
            ("wait-for-rollout", StageOutcome.SKIPPED),
        ]
        assert cluster.applied == []

    @pytest.mark.asyncio
    async def test_expiry_fails_run(self, make_coordinator, cluster):
        coordinator = make_coordinator(required_approvals=1, approval_timeout=0.05)

        run = await coordinator.wait((await coordinator.start_cd()).run_id)

        assert run.status is RunStatus.FAILED
        assert run.failure_reason == "ApprovalExpired"
        assert cluster.applied == []

    @pytest.mark.asyncio
    async def test_cancel_while_awaiting_approval(self, make_coordinator):
        coordinator = make_coordinator(required_approvals=1)
        run = await coordinator.start_cd()
        waiting = await _until(coordinator, run.run_id, RunStatus.AWAITING_APPROVAL)

        await coordinator.cancel(run.run_id)
        run = await coordinator.wait(run.run_id)

        assert run.status is RunStatus.CANCELLED
        assert run.failure_reason == "RunCancelled"
        assert coordinator.approval_gate.pending() == []
        assert coordinator.approval_gate.get(waiting.approval_request_id) is not None


class TestQueries:
    @pytest.mark.asyncio
    async def test_unknown_run(self, make_coordinator):
        coordinator = make_coordinator()
        with pytest.raises(RunNotFound):
            coordinator.get_status("ci-missing")
        with pytest.raises(RunNotFound):
            await coordinator.cancel("ci-missing")

    @pytest.mark.asyncio
    async def test_subscribers_see_the_event_feed(self, make_coordinator):
        coordinator = make_coordinator()
        received = []

        async def handler(event):
            received.append((event.aggregate_id, type(event).__name__))

        coordinator.subscribe(handler)
        run = await coordinator.start_cd()
        await coordinator.wait(run.run_id)

        assert [name for rid, name in received if rid == run.run_id] == [
            "RunStartedEvent",
            "StageStartedEvent",
            "StageCompletedEvent",
            "StageStartedEvent",
            "StageCompletedEvent",
            "RunSucceededEvent",
        ]
        assert len(coordinator.events(run.run_id)) == 2

    @pytest.mark.asyncio
    async def test_cancel_terminal_run_is_noop(self, make_coordinator):
        coordinator = make_coordinator()
        run = await coordinator.wait((await coordinator.start_cd()).run_id)

        assert (await coordinator.cancel(run.run_id)).status is RunStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_shutdown_cancels_active_runs(self, make_coordinator):
        coordinator = make_coordinator(required_approvals=1)
        run = await coordinator.start_cd()
        await _until(coordinator, run.run_id, RunStatus.AWAITING_APPROVAL)

        await coordinator.shutdown()

        assert coordinator.get_status(run.run_id).status is RunStatus.CANCELLED
