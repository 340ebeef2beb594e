"""
Cluster Port

Architectural Intent:
- Port interface for the target cluster API
- apply() submits one descriptor (create or replace); rejection raises ApplyRejected
- get_status() reports rollout progress for a named deployment
- Implemented by KubernetesAdapter
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from shipyard.domain.entities.descriptor import DeploymentDescriptor


@dataclass(frozen=True)
class DeploymentState:
    """Raw deployment state as reported by the cluster.

    observed_replicas is the number of replicas on the current pod template;
    generation_observed is False while the controller has not yet seen the
    latest spec.
    """
    name: str
    desired_replicas: int
    ready_replicas: int = 0
    observed_replicas: int = 0
    conditions: tuple[str, ...] = field(default_factory=tuple)
    generation_observed: bool = True


class ClusterPort(ABC):
    """
    Port interface for applying descriptors and reading rollout state.
    """

    @abstractmethod
    async def apply(self, descriptor: DeploymentDescriptor) -> str:
        """
        Submits the descriptor to the cluster. Returns the cluster acknowledgement
        (resource version or 'created'/'configured').
        """
        pass

    @abstractmethod
    async def get_status(self, name: str) -> DeploymentState:
        """
        Reads the current state of a deployment.
        """
        pass
