"""
Domain Ports Package

Architectural Intent:
- Contains port interfaces (abstract contracts) for external dependencies
- Ports define what the domain needs, adapters implement how
- Follows Hexagonal Architecture principles
"""

from shipyard.domain.ports.repository_port import (
    RepositoryPort,
    RepositoryState,
    CommitResult,
)
from shipyard.domain.ports.cluster_port import ClusterPort, DeploymentState
from shipyard.domain.ports.event_bus_port import EventBusPort
from shipyard.domain.ports.notification_port import NotificationPort

__all__ = [
    "RepositoryPort",
    "RepositoryState",
    "CommitResult",
    "ClusterPort",
    "DeploymentState",
    "EventBusPort",
    "NotificationPort",
]
