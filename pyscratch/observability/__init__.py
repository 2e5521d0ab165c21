"""
pyscratch Observability Module.

Provides OpenTelemetry-based metrics for monitoring sandbox sessions and
evaluations. Supports multiple exporter backends (OTLP, Console).
"""

from pyscratch.observability.metrics import (
    # Initialization
    init_metrics,
    shutdown_metrics,
    is_initialized,
    get_meter_provider,
    ExporterType,
    # Evaluation metrics
    record_evaluation_submitted,
    record_evaluation_completed,
    record_evaluation_dropped,
    record_stale_result,
    # Session metrics
    record_session_event,
)

__all__ = [
    # Initialization
    "init_metrics",
    "shutdown_metrics",
    "is_initialized",
    "get_meter_provider",
    "ExporterType",
    # Evaluation metrics
    "record_evaluation_submitted",
    "record_evaluation_completed",
    "record_evaluation_dropped",
    "record_stale_result",
    # Session metrics
    "record_session_event",
]
