"""
Shipyard Telemetry Infrastructure

Architectural Intent:
- OpenTelemetry integration for observability
- Stage spans plus run and stage metrics, fed by the event bus
"""

from shipyard.infrastructure.telemetry.otel_exporter import (
    OTELExporter,
    OTELConfig,
    create_exporter,
)

__all__ = [
    "OTELExporter",
    "OTELConfig",
    "create_exporter",
]
