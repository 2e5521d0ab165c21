"""
OpenTelemetry metrics definitions for pyscratch.

This module provides metrics instrumentation using OpenTelemetry SDK,
with configurable exporter backends (OTLP, Console, etc.). Every record_*
helper is a no-op until init_metrics() has been called.
"""

from typing import Optional, List
from enum import Enum


class ExporterType(str, Enum):
    """Supported metrics exporter types."""
    OTLP = "otlp"
    OTLP_HTTP = "otlp_http"
    CONSOLE = "console"
    NONE = "none"  # For testing or disabled metrics


# Global state
_meter = None
_meter_provider = None
_initialized = False

# Metric instruments
_evaluation_counter = None
_evaluation_duration = None
_evaluation_in_progress = None
_stale_result_counter = None
_session_counter = None


def _create_exporter(
    exporter_type: ExporterType,
    **kwargs,
):
    """
    Create a metric reader based on the exporter type.

    Args:
        exporter_type: Type of exporter to create
        **kwargs: Additional arguments for the exporter
            - endpoint: OTLP endpoint URL
            - headers: OTLP headers dict
            - export_interval_millis: Export interval for periodic exporters

    Returns:
        A metric reader instance, or None for ExporterType.NONE
    """
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader

    export_interval = kwargs.pop("export_interval_millis", 10000)

    if exporter_type == ExporterType.OTLP:
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
        exporter = OTLPMetricExporter(**kwargs)
        return PeriodicExportingMetricReader(
            exporter,
            export_interval_millis=export_interval,
        )

    elif exporter_type == ExporterType.OTLP_HTTP:
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        exporter = OTLPMetricExporter(**kwargs)
        return PeriodicExportingMetricReader(
            exporter,
            export_interval_millis=export_interval,
        )

    elif exporter_type == ExporterType.CONSOLE:
        from opentelemetry.sdk.metrics.export import ConsoleMetricExporter
        exporter = ConsoleMetricExporter()
        return PeriodicExportingMetricReader(
            exporter,
            export_interval_millis=export_interval,
        )

    elif exporter_type == ExporterType.NONE:
        return None

    else:
        raise ValueError(f"Unknown exporter type: {exporter_type}")


def init_metrics(
    service_name: str = "pyscratch",
    exporter_type: "str | ExporterType" = ExporterType.CONSOLE,
    extra_readers: Optional[List] = None,
    **exporter_kwargs,
):
    """
    Initialize OpenTelemetry metrics with the specified exporter.

    Args:
        service_name: Name of the service for resource identification
        exporter_type: Exporter type ("otlp", "otlp_http", "console", "none")
        extra_readers: Already constructed metric readers to attach as well,
            e.g. an InMemoryMetricReader in tests
        **exporter_kwargs: Additional arguments for the exporter
            - endpoint: OTLP endpoint URL (e.g., "http://localhost:4317")
            - headers: OTLP headers dict
            - export_interval_millis: Export interval for periodic exporters

    Returns:
        The configured MeterProvider

    Example:
        # Console exporter (default)
        init_metrics()

        # OTLP gRPC
        init_metrics(exporter_type="otlp", endpoint="http://localhost:4317")
    """
    global _meter, _meter_provider, _initialized
    global _evaluation_counter, _evaluation_duration, _evaluation_in_progress
    global _stale_result_counter, _session_counter

    if _initialized:
        return _meter_provider

    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.resources import Resource, SERVICE_NAME

    # Convert string to enum if needed
    if isinstance(exporter_type, str):
        exporter_type = ExporterType(exporter_type)

    resource = Resource.create({SERVICE_NAME: service_name})

    readers = []
    primary_reader = _create_exporter(exporter_type, **exporter_kwargs)
    if primary_reader is not None:
        readers.append(primary_reader)
    readers.extend(extra_readers or [])

    # Kept local rather than installed globally so metrics can be
    # initialized again after shutdown_metrics()
    _meter_provider = MeterProvider(resource=resource, metric_readers=readers)
    _meter = _meter_provider.get_meter("pyscratch.metrics", version="0.1.0")

    _evaluation_counter = _meter.create_counter(
        name="pyscratch_evaluation_total",
        description="Total number of evaluations by status",
        unit="1",
    )

    _evaluation_duration = _meter.create_histogram(
        name="pyscratch_evaluation_duration_seconds",
        description="Time from submission to delivered outcome in seconds",
        unit="s",
    )

    _evaluation_in_progress = _meter.create_up_down_counter(
        name="pyscratch_evaluation_in_progress",
        description="Number of submitted evaluations without an outcome yet",
        unit="1",
    )

    _stale_result_counter = _meter.create_counter(
        name="pyscratch_stale_result_total",
        description="Outcomes and output dropped because their session or request is gone",
        unit="1",
    )

    _session_counter = _meter.create_counter(
        name="pyscratch_session_total",
        description="Sandbox sessions by lifecycle event",
        unit="1",
    )

    _initialized = True
    return _meter_provider


def shutdown_metrics() -> None:
    """Shutdown the meter provider and flush metrics."""
    global _meter_provider, _meter, _initialized
    global _evaluation_counter, _evaluation_duration, _evaluation_in_progress
    global _stale_result_counter, _session_counter
    if _meter_provider is not None:
        _meter_provider.shutdown()
    _meter_provider = None
    _meter = None
    _evaluation_counter = None
    _evaluation_duration = None
    _evaluation_in_progress = None
    _stale_result_counter = None
    _session_counter = None
    _initialized = False


def is_initialized() -> bool:
    """Check if metrics have been initialized."""
    return _initialized


def get_meter_provider():
    """Get the current meter provider."""
    return _meter_provider


# =============================================================================
# Evaluation Metrics Helper Functions
# =============================================================================


def record_evaluation_submitted() -> None:
    """Record a submission entering the channel."""
    if _evaluation_counter is not None:
        _evaluation_counter.add(1, {"status": "submitted"})
    if _evaluation_in_progress is not None:
        _evaluation_in_progress.add(1)


def record_evaluation_completed(is_error: bool, duration: float) -> None:
    """Record a delivered outcome."""
    status = "error" if is_error else "value"
    if _evaluation_counter is not None:
        _evaluation_counter.add(1, {"status": status})
    if _evaluation_duration is not None:
        _evaluation_duration.record(duration, {"status": status})
    if _evaluation_in_progress is not None:
        _evaluation_in_progress.add(-1)


def record_evaluation_dropped() -> None:
    """Record a request discarded by a session teardown."""
    if _evaluation_counter is not None:
        _evaluation_counter.add(1, {"status": "dropped"})
    if _evaluation_in_progress is not None:
        _evaluation_in_progress.add(-1)


def record_stale_result() -> None:
    if _stale_result_counter is not None:
        _stale_result_counter.add(1)


# =============================================================================
# Session Metrics Helper Functions
# =============================================================================


def record_session_event(level: str, event: str) -> None:
    """Record a session lifecycle event ("created", "disposed" or "failed")."""
    if _session_counter is not None:
        _session_counter.add(1, {"level": level, "event": event})
