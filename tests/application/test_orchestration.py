"""
Application Layer Tests

Architectural Intent:
- Tests for the DAG orchestrator that sequences pipeline stages
- Verifies dependency ordering, fail-fast and stage hooks
"""

import pytest
from shipyard.application.orchestration.dag_orchestrator import (
    DAGOrchestrator,
    WorkflowStep,
    OrchestrationError,
)


class TestDAGOrchestrator:
    """Tests for DAG-based workflow orchestration."""

    @pytest.mark.asyncio
    async def test_sequential_execution(self):
        execution_order = []

        async def step_a(context, results):
            execution_order.append("a")
            return "a_result"

        async def step_b(context, results):
            execution_order.append("b")
            return results["a"] + "+b"

        orchestrator = DAGOrchestrator(
            [
                WorkflowStep("a", step_a, depends_on=[]),
                WorkflowStep("b", step_b, depends_on=["a"]),
            ]
        )

        result = await orchestrator.execute({})

        assert execution_order == ["a", "b"]
        assert result["b"] == "a_result+b"

    @pytest.mark.asyncio
    async def test_fan_out_fan_in(self):
        seen = []

        async def step_a(context, results):
            return "a"

        async def step_b(context, results):
            return "b"

        async def step_c(context, results):
            seen.extend([results["a"], results["b"]])
            return "c"

        orchestrator = DAGOrchestrator(
            [
                WorkflowStep("a", step_a),
                WorkflowStep("b", step_b),
                WorkflowStep("c", step_c, depends_on=["a", "b"]),
            ]
        )

        result = await orchestrator.execute({})

        assert result["c"] == "c"
        assert seen == ["a", "b"]

    @pytest.mark.asyncio
    async def test_critical_failure_reports_skipped_steps(self):
        async def ok(context, results):
            return "ok"

        async def broken(context, results):
            raise ValueError("Step B failed")

        orchestrator = DAGOrchestrator.chain([("a", ok), ("b", broken), ("c", ok)])

        with pytest.raises(OrchestrationError, match="Critical step b failed") as exc:
            await orchestrator.execute({})

        assert exc.value.step == "b"
        assert isinstance(exc.value.cause, ValueError)
        assert exc.value.skipped == ("c",)

    @pytest.mark.asyncio
    async def test_non_critical_failure_continues(self):
        async def step_a(context, results):
            return "a"

        async def step_b(context, results):
            raise ValueError("Step B failed")

        orchestrator = DAGOrchestrator(
            [
                WorkflowStep("a", step_a),
                WorkflowStep("b", step_b, depends_on=["a"], is_critical=False),
            ]
        )

        result = await orchestrator.execute({})

        assert result["a"] == "a"
        assert isinstance(result["b"], ValueError)

    @pytest.mark.asyncio
    async def test_circular_dependency_detected(self):
        async def step(context, results):
            return None

        orchestrator = DAGOrchestrator(
            [
                WorkflowStep("a", step, depends_on=["b"]),
                WorkflowStep("b", step, depends_on=["a"]),
            ]
        )

        with pytest.raises(OrchestrationError, match="Circular dependency"):
            await orchestrator.execute({})

    @pytest.mark.asyncio
    async def test_chain_links_each_step_to_the_previous(self):
        async def step(context, results):
            return len(results)

        orchestrator = DAGOrchestrator.chain([("a", step), ("b", step), ("c", step)])

        assert orchestrator.steps["a"].depends_on == []
        assert orchestrator.steps["c"].depends_on == ["b"]
        assert await orchestrator.execute({}) == {"a": 0, "b": 1, "c": 2}

    @pytest.mark.asyncio
    async def test_hooks_see_start_and_outcome(self):
        calls = []

        async def on_start(name):
            calls.append(("start", name))

        async def on_end(name, result, error):
            calls.append(("end", name, result, type(error).__name__ if error else None))

        async def ok(context, results):
            return context["value"]

        async def broken(context, results):
            raise RuntimeError("boom")

        orchestrator = DAGOrchestrator.chain(
            [("a", ok), ("b", broken), ("c", ok)],
            on_step_start=on_start,
            on_step_end=on_end,
        )

        with pytest.raises(OrchestrationError):
            await orchestrator.execute({"value": 7})

        assert calls == [
            ("start", "a"),
            ("end", "a", 7, None),
            ("start", "b"),
            ("end", "b", None, "RuntimeError"),
        ]
