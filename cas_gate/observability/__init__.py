"""
Observability features for cas-gate.
"""

from .metrics import MetricsCollector, get_metrics_collector
from .logging import setup_logging, get_logger, GateLogger, AuditLogger
from .tracing import setup_tracing, get_tracer

__all__ = [
    "MetricsCollector",
    "get_metrics_collector",
    "setup_logging",
    "get_logger",
    "GateLogger",
    "AuditLogger",
    "setup_tracing",
    "get_tracer",
]
