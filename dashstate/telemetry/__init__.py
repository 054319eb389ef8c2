"""
Best-effort telemetry: batched duration records delivered to a remote sink.
"""
from .models import MetricRecord, PerformanceLogRow
from .sinks import (
    MetricSink,
    PrincipalResolver,
    RestMetricSink,
    SqlMetricSink,
    RestPrincipalResolver,
    static_principal,
)
from .batcher import (
    MetricBatcher,
    get_metric_batcher,
    shutdown_metric_batcher,
)
from .measure import Measurement, start_measure, measure

__all__ = [
    # Models
    "MetricRecord",
    "PerformanceLogRow",
    # Sinks
    "MetricSink",
    "PrincipalResolver",
    "RestMetricSink",
    "SqlMetricSink",
    "RestPrincipalResolver",
    "static_principal",
    # Batching
    "MetricBatcher",
    "get_metric_batcher",
    "shutdown_metric_batcher",
    # Timing
    "Measurement",
    "start_measure",
    "measure",
]
