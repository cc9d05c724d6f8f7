"""
Observability module.
Contains logging, metrics, tracing setup, and worker event subscribers.
"""

from jobengine.observability.logging import job_log_context, setup_logging
from jobengine.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
    start_metrics_server,
)
from jobengine.observability.subscribers import attach_observers
from jobengine.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "job_log_context",
    "setup_metrics",
    "get_metrics",
    "start_metrics_server",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "attach_observers",
]
