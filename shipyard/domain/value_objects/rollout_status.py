from dataclasses import dataclass, asdict
from typing import Any


@dataclass(frozen=True)
class RolloutStatus:
    """
    Value Object representing one observation of a deployment rollout.
    Recomputed on every poll; only ever persisted through the run's event log.

    observed_replicas counts replicas already running the current pod template.
    Right after an update the previous replicas are still ready, so a rollout
    is complete only once the controller has observed the new generation and
    every desired replica is both updated and ready.
    """
    name: str
    desired_replicas: int
    observed_replicas: int = 0
    ready_replicas: int = 0
    last_condition: str = ""
    terminal: bool = False
    generation_observed: bool = True

    @property
    def is_complete(self) -> bool:
        return (
            self.generation_observed
            and self.observed_replicas == self.desired_replicas
            and self.ready_replicas == self.desired_replicas
        )

    def mark_terminal(self) -> "RolloutStatus":
        return RolloutStatus(
            name=self.name,
            desired_replicas=self.desired_replicas,
            observed_replicas=self.observed_replicas,
            ready_replicas=self.ready_replicas,
            last_condition=self.last_condition,
            terminal=True,
            generation_observed=self.generation_observed,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        return f"{self.name} {self.ready_replicas}/{self.desired_replicas} ready"
