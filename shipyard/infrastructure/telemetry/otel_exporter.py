"""
OpenTelemetry Exporter for Shipyard

Architectural Intent:
- Exports pipeline telemetry to OTLP-compatible backends
- Subscribes to the event bus: one span per stage, run duration and stage
  outcome metrics, with no telemetry calls inside the coordinator itself

Security:
- Endpoint defaults to empty string (must be explicitly configured)
- Non-localhost http:// endpoints rejected unless insecure=True
- Validation in __post_init__ prevents accidental plaintext export
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Any
from urllib.parse import urlparse
import logging
from datetime import datetime, UTC

from shipyard.domain.events.event_base import DomainEvent
from shipyard.domain.events.pipeline_events import (
    RunCancelledEvent,
    RunFailedEvent,
    RunSucceededEvent,
    StageCompletedEvent,
    StageStartedEvent,
)
from shipyard.domain.ports.event_bus_port import EventBusPort

logger = logging.getLogger(__name__)


@dataclass
class OTELConfig:
    endpoint: str = ""
    service_name: str = "shipyard"
    environment: str = "development"
    enable_traces: bool = True
    enable_metrics: bool = True
    insecure: bool = False

    def __post_init__(self) -> None:
        if self.endpoint:
            parsed = urlparse(self.endpoint)
            is_localhost = parsed.hostname in ("localhost", "127.0.0.1", "::1")
            if parsed.scheme == "http" and not is_localhost and not self.insecure:
                raise ValueError(
                    f"Non-localhost HTTP endpoint '{self.endpoint}' requires "
                    "insecure=True or use https://. "
                    "Set insecure=True to explicitly allow plaintext export."
                )


class OTELExporter:
    """
    OpenTelemetry exporter for pipeline runs.

    Without an endpoint the exporter still buffers metrics locally, which is
    what the tests and the `status` command read.
    """

    def __init__(self, config: OTELConfig):
        self.config = config
        self._initialized = False
        self._metrics_buffer: list[dict[str, Any]] = []
        self._meter: Any = None
        self._instruments: dict[str, Any] = {}
        self._spans: dict[tuple[str, str], Any] = {}

    async def initialize(self) -> None:
        """Initialize OpenTelemetry SDK and exporters."""
        if not self.config.endpoint:
            logger.info("OTEL endpoint not configured, telemetry disabled")
            return

        try:
            from opentelemetry import trace
            from opentelemetry.sdk.trace import TracerProvider
            from opentelemetry.sdk.trace.export import BatchSpanProcessor
            from opentelemetry.sdk.resources import Resource, SERVICE_NAME
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )
            from opentelemetry import metrics
            from opentelemetry.sdk.metrics import MeterProvider
            from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
            from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
                OTLPMetricExporter,
            )

            resource = Resource(
                attributes={
                    SERVICE_NAME: self.config.service_name,
                    "environment": self.config.environment,
                }
            )

            if self.config.enable_traces:
                trace.set_tracer_provider(TracerProvider(resource=resource))
                span_processor = BatchSpanProcessor(
                    OTLPSpanExporter(
                        endpoint=self.config.endpoint, insecure=self.config.insecure
                    )
                )
                trace.get_tracer_provider().add_span_processor(span_processor)

            if self.config.enable_metrics:
                metric_reader = PeriodicExportingMetricReader(
                    OTLPMetricExporter(
                        endpoint=self.config.endpoint, insecure=self.config.insecure
                    )
                )
                provider = MeterProvider(
                    resource=resource, metric_readers=[metric_reader]
                )
                metrics.set_meter_provider(provider)
                self._meter = metrics.get_meter(__name__)

            self._initialized = True

        except ImportError:
            logger.warning("OpenTelemetry SDK not installed, telemetry disabled")
            self._initialized = False
        except Exception as e:
            logger.error("Failed to initialize OTEL: %s", e)
            self._initialized = False

    def subscribe(self, event_bus: EventBusPort) -> None:
        event_bus.subscribe(StageStartedEvent, self._on_stage_started)
        event_bus.subscribe(StageCompletedEvent, self._on_stage_completed)
        for event_type in (RunSucceededEvent, RunFailedEvent, RunCancelledEvent):
            event_bus.subscribe(event_type, self._on_run_finished)

    @property
    def metrics(self) -> list[dict[str, Any]]:
        return list(self._metrics_buffer)

    def record_histogram(
        self,
        name: str,
        value: float,
        unit: str = "",
        attributes: Optional[dict[str, str]] = None,
    ) -> None:
        self._buffer(name, value, unit, attributes)
        if self._meter:
            if name not in self._instruments:
                self._instruments[name] = self._meter.create_histogram(name, unit=unit)
            self._instruments[name].record(value, attributes=attributes or {})

    def record_counter(
        self,
        name: str,
        attributes: Optional[dict[str, str]] = None,
    ) -> None:
        self._buffer(name, 1.0, "", attributes)
        if self._meter:
            if name not in self._instruments:
                self._instruments[name] = self._meter.create_counter(name)
            self._instruments[name].add(1, attributes=attributes or {})

    def start_span(
        self,
        name: str,
        attributes: Optional[dict[str, str]] = None,
    ) -> Optional[Any]:
        """Start a tracing span."""
        if not self._initialized:
            return None

        from opentelemetry import trace

        tracer = trace.get_tracer(__name__)
        return tracer.start_span(name, attributes=attributes or {})

    async def export(self) -> None:
        """Drop the local buffer; the SDK reader exports on its own schedule."""
        exported_count = len(self._metrics_buffer)
        self._metrics_buffer.clear()
        if exported_count:
            logger.debug("Flushed %d buffered metrics", exported_count)

    async def _on_stage_started(self, event: DomainEvent) -> None:
        assert isinstance(event, StageStartedEvent)
        span = self.start_span(
            f"shipyard.stage.{event.stage}",
            {"run_id": event.aggregate_id, "kind": event.kind, "stage": event.stage},
        )
        if span is not None:
            self._spans[(event.aggregate_id, event.stage)] = span

    async def _on_stage_completed(self, event: DomainEvent) -> None:
        assert isinstance(event, StageCompletedEvent)
        attributes = {"kind": event.kind, "stage": event.stage, "outcome": event.outcome}
        self.record_counter("shipyard.stage.outcome", attributes)
        span = self._spans.pop((event.aggregate_id, event.stage), None)
        if span is not None:
            span.set_attribute("outcome", event.outcome)
            span.end()

    async def _on_run_finished(self, event: DomainEvent) -> None:
        status = {
            RunSucceededEvent: "SUCCEEDED",
            RunFailedEvent: "FAILED",
            RunCancelledEvent: "CANCELLED",
        }[type(event)]
        attributes = {"kind": getattr(event, "kind", ""), "status": status}
        reason = getattr(event, "reason", "")
        if reason:
            attributes["reason"] = reason
        self.record_histogram(
            "shipyard.run.duration_ms",
            getattr(event, "duration_seconds", 0.0) * 1000,
            unit="ms",
            attributes=attributes,
        )

    def _buffer(
        self, name: str, value: float, unit: str, attributes: Optional[dict[str, str]]
    ) -> None:
        self._metrics_buffer.append(
            {
                "name": name,
                "value": value,
                "unit": unit,
                "attributes": attributes or {},
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )


async def create_exporter(
    endpoint: Optional[str] = None,
    service_name: str = "shipyard",
    insecure: bool = False,
) -> OTELExporter:
    """Factory function to create OTEL exporter."""
    config = OTELConfig(
        endpoint=endpoint or "",
        service_name=service_name,
        insecure=insecure,
    )
    exporter = OTELExporter(config)
    await exporter.initialize()
    return exporter
