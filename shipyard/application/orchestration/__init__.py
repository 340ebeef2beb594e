"""
Application Orchestration Package

Architectural Intent:
- Contains workflow orchestration components
- DAG-based stage execution and the pipeline coordinator built on it
"""

from shipyard.application.orchestration.dag_orchestrator import (
    DAGOrchestrator,
    WorkflowStep,
    OrchestrationError,
)
from shipyard.application.orchestration.pipeline_coordinator import (
    PipelineCoordinator,
    PipelineSettings,
)

__all__ = [
    "DAGOrchestrator",
    "WorkflowStep",
    "OrchestrationError",
    "PipelineCoordinator",
    "PipelineSettings",
]
