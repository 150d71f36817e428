"""
Prometheus metrics collection for cas-gate.
"""

from typing import Optional
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


class MetricsCollector:
    """Centralized metrics collection."""

    def __init__(self):
        self.gate_decisions = Counter(
            'cas_gate_decisions_total',
            'Gate decisions by action and reason',
            ['action', 'reason']
        )

        self.ticket_validations = Counter(
            'cas_gate_ticket_validations_total',
            'Ticket validations by outcome',
            ['outcome']
        )

        self.validation_duration = Histogram(
            'cas_gate_ticket_validation_duration_seconds',
            'Time spent validating tickets against CAS',
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
        )

        self.logout_notifications = Counter(
            'cas_gate_logout_notifications_total',
            'Single-logout notifications received'
        )

        self.sessions_revoked = Counter(
            'cas_gate_sessions_revoked_total',
            'Sessions cleared because their ticket was logged out'
        )

    def record_decision(self, action: str, reason: str):
        """Record a gate decision."""
        self.gate_decisions.labels(action=action, reason=reason).inc()

    def record_validation(self, outcome: str, duration: float):
        """Record a ticket validation."""
        self.ticket_validations.labels(outcome=outcome).inc()
        self.validation_duration.observe(duration)

    def record_logout_notification(self):
        self.logout_notifications.inc()

    def record_session_revoked(self):
        self.sessions_revoked.inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus format."""
        return generate_latest().decode('utf-8')

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
