"""
Domain Events Module

Architectural Intent:
- Immutable records of pipeline run transitions
- The aggregate is the pipeline run; aggregate_id holds its run id
- Runs collect events in domain_events; the coordinator publishes them in order
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, UTC
from typing import Any


def _event_id() -> str:
    return f"evt-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class DomainEvent:
    event_id: str = field(default_factory=_event_id, init=False, repr=False, compare=False)
    occurred_at: str = field(
        default_factory=lambda: datetime.now(UTC).isoformat(), init=False, repr=False
    )
    aggregate_id: str = ""

    @property
    def run_id(self) -> str:
        return self.aggregate_id

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data
