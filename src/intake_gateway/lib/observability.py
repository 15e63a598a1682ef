"""
OpenTelemetry configuration with OTLP exporters for the intake gateway.

Provides traces and metrics for routing decisions, workflow execution and
session-state merges. When telemetry is not initialized the OpenTelemetry
API hands out no-op tracers and meters, so instrumented code runs unchanged.
"""

import logging
import os
from typing import Dict, Any, Optional

from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource


logger = logging.getLogger(__name__)

INSTRUMENTATION_NAME = "intake_gateway"


class ObservabilitySettings:
    """Resolved settings for OpenTelemetry setup."""

    def __init__(self, config: Dict[str, Any]):
        self.service_name = config.get("service_name", "intake-gateway")
        self.service_version = config.get("service_version", "1.0.0")
        self.environment = config.get("environment", "development")

        self.otlp_endpoint = config.get("otlp_endpoint", os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317"))
        self.metrics_endpoint = config.get("metrics_endpoint", self.otlp_endpoint)
        self.traces_endpoint = config.get("traces_endpoint", self.otlp_endpoint)

        self.export_timeout = config.get("export_timeout", 30)
        self.max_export_batch_size = config.get("max_export_batch_size", 512)
        self.metric_export_interval_ms = config.get("metric_export_interval_ms", 10000)

        self.trace_sampling_ratio = config.get("trace_sampling_ratio", 1.0)
        self.resource_attributes = config.get("resource_attributes", {})


class TelemetryManager:
    """Manages OpenTelemetry setup and lifecycle."""

    def __init__(self, settings: ObservabilitySettings):
        self.settings = settings
        self._initialized = False
        self._tracer_provider: Optional[TracerProvider] = None
        self._meter_provider: Optional[MeterProvider] = None

    def initialize(self) -> None:
        """Initialize OpenTelemetry with OTLP exporters."""
        if self._initialized:
            logger.warning("Telemetry already initialized")
            return

        resource = Resource.create({
            "service.name": self.settings.service_name,
            "service.version": self.settings.service_version,
            "deployment.environment": self.settings.environment,
            **self.settings.resource_attributes
        })

        span_processor = BatchSpanProcessor(
            OTLPSpanExporter(
                endpoint=self.settings.traces_endpoint,
                timeout=self.settings.export_timeout
            ),
            max_export_batch_size=self.settings.max_export_batch_size
        )
        self._tracer_provider = TracerProvider(
            resource=resource,
            sampler=TraceIdRatioBased(self.settings.trace_sampling_ratio)
        )
        self._tracer_provider.add_span_processor(span_processor)
        trace.set_tracer_provider(self._tracer_provider)

        metric_reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(
                endpoint=self.settings.metrics_endpoint,
                timeout=self.settings.export_timeout
            ),
            export_interval_millis=self.settings.metric_export_interval_ms
        )
        self._meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
        metrics.set_meter_provider(self._meter_provider)

        self._initialized = True
        logger.info(f"OpenTelemetry initialized for service: {self.settings.service_name}")

    @property
    def initialized(self) -> bool:
        return self._initialized

    def shutdown(self) -> None:
        """Gracefully shutdown telemetry and flush pending data."""
        if not self._initialized:
            return

        try:
            if self._tracer_provider is not None:
                self._tracer_provider.shutdown()
            if self._meter_provider is not None:
                self._meter_provider.shutdown()
            logger.info("OpenTelemetry shutdown completed")
        except Exception as e:
            logger.error(f"Error during telemetry shutdown: {e}")
        finally:
            self._initialized = False


# Global telemetry manager instance
_telemetry_manager: Optional[TelemetryManager] = None


def initialize_telemetry(config: Dict[str, Any]) -> TelemetryManager:
    """Initialize global telemetry manager."""
    global _telemetry_manager

    _telemetry_manager = TelemetryManager(ObservabilitySettings(config))
    _telemetry_manager.initialize()

    return _telemetry_manager


def shutdown_telemetry() -> None:
    """Shutdown global telemetry manager."""
    global _telemetry_manager
    if _telemetry_manager:
        _telemetry_manager.shutdown()
        _telemetry_manager = None


def get_tracer() -> trace.Tracer:
    """Get the gateway tracer (no-op until telemetry is initialized)."""
    return trace.get_tracer(INSTRUMENTATION_NAME)


def get_meter() -> metrics.Meter:
    """Get the gateway meter (no-op until telemetry is initialized)."""
    return metrics.get_meter(INSTRUMENTATION_NAME)
