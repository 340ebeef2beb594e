"""
Workflow Orchestration Module

Architectural Intent:
- DAG-based execution of pipeline stages
- Enforces dependency ordering; steps at the same dependency level run concurrently
- Stage hooks let the caller record a start and an outcome for every step
- The first critical failure stops the workflow; steps that never ran are reported
  as skipped

Pipelines in this project chain their stages (each depends on the previous one),
so execution is strictly sequential in practice.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from typing import Callable, Awaitable, Any, Optional, Sequence

StepFn = Callable[[dict[str, Any], dict[str, Any]], Awaitable[Any]]
StepStartHook = Callable[[str], Awaitable[None]]
StepEndHook = Callable[[str, Any, Optional[BaseException]], Awaitable[None]]


@dataclass
class WorkflowStep:
    name: str
    execute: StepFn
    depends_on: list[str] = field(default_factory=list)
    is_critical: bool = True


class OrchestrationError(Exception):
    def __init__(
        self,
        message: str,
        step: str = "",
        cause: Optional[BaseException] = None,
        skipped: Sequence[str] = (),
    ) -> None:
        super().__init__(message)
        self.step = step
        self.cause = cause
        self.skipped = tuple(skipped)


class DAGOrchestrator:
    def __init__(
        self,
        steps: list[WorkflowStep],
        on_step_start: Optional[StepStartHook] = None,
        on_step_end: Optional[StepEndHook] = None,
    ) -> None:
        self.steps: dict[str, WorkflowStep] = {s.name: s for s in steps}
        self._order = [s.name for s in steps]
        self._on_step_start = on_step_start
        self._on_step_end = on_step_end
        self._validated = False

    @staticmethod
    def chain(steps: Sequence[tuple[str, StepFn]], **hooks: Any) -> DAGOrchestrator:
        """Builds a linear workflow where each step depends on the one before."""
        workflow = []
        previous: Optional[str] = None
        for name, fn in steps:
            workflow.append(
                WorkflowStep(name, fn, depends_on=[previous] if previous else [])
            )
            previous = name
        return DAGOrchestrator(workflow, **hooks)

    def _validate_no_cycles(self) -> None:
        visited: set[str] = set()
        rec_stack: set[str] = set()

        def has_cycle(name: str) -> bool:
            visited.add(name)
            rec_stack.add(name)

            step = self.steps.get(name)
            if step:
                for dep in step.depends_on:
                    if dep not in visited:
                        if has_cycle(dep):
                            return True
                    elif dep in rec_stack:
                        return True

            rec_stack.remove(name)
            return False

        for step_name in self.steps:
            if step_name not in visited:
                if has_cycle(step_name):
                    raise OrchestrationError(
                        f"Circular dependency detected involving step: {step_name}"
                    )

    async def _run_step(
        self, step: WorkflowStep, context: dict[str, Any], completed: dict[str, Any]
    ) -> Any:
        if self._on_step_start:
            await self._on_step_start(step.name)
        try:
            result = await step.execute(context, completed)
        except BaseException as e:
            if self._on_step_end:
                await self._on_step_end(step.name, None, e)
            raise
        if self._on_step_end:
            await self._on_step_end(step.name, result, None)
        return result

    async def execute(self, context: dict[str, Any]) -> dict[str, Any]:
        if not self._validated:
            self._validate_no_cycles()
            self._validated = True

        completed: dict[str, Any] = {}
        pending = set(self.steps.keys())

        while pending:
            ready = [
                name
                for name in self._order
                if name in pending
                and all(dep in completed for dep in self.steps[name].depends_on)
            ]
            if not ready:
                raise OrchestrationError(
                    f"Circular dependency or unsatisfied dependencies. Pending: {pending}"
                )

            results = await asyncio.gather(
                *(self._run_step(self.steps[name], context, completed) for name in ready),
                return_exceptions=True,
            )

            for name, result in zip(ready, results):
                pending.discard(name)
                if isinstance(result, BaseException):
                    if self.steps[name].is_critical:
                        skipped = [n for n in self._order if n in pending]
                        raise OrchestrationError(
                            f"Critical step {name} failed: {result}",
                            step=name,
                            cause=result,
                            skipped=skipped,
                        ) from result
                completed[name] = result

        return completed
