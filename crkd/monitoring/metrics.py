"""
Prometheus metrics for notification dispatch and retention sweeps.

Exposed through the `/metrics` endpoint of the web application.
"""

from typing import Optional
from flask import Response
from prometheus_client import (
    CollectorRegistry, Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
)


class ServiceMetrics:
    """
    Metrics shared by the dispatcher, the sweeper and the HTTP layer.

    A dedicated registry is used unless one is passed in, so several
    instances (one per test) never collide on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.notifications_total = Counter(
            'crkd_notifications_total',
            'Outbound notification send attempts',
            ['event', 'outcome'],
            registry=self.registry
        )

        self.notification_send_seconds = Histogram(
            'crkd_notification_send_seconds',
            'Time spent handing a single message to the mail transport',
            ['event'],
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
            registry=self.registry
        )

        self.retention_sweeps_total = Counter(
            'crkd_retention_sweeps_total',
            'Retention sweeps by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.retention_reports_deleted_total = Counter(
            'crkd_retention_reports_deleted_total',
            'Reports removed by the retention sweeper',
            registry=self.registry
        )

    def record_send(self, event: str, success: bool, duration_seconds: float) -> None:
        self.notifications_total.labels(
            event=event, outcome='success' if success else 'failure'
        ).inc()
        self.notification_send_seconds.labels(event=event).observe(duration_seconds)

    def record_sweep(self, outcome: str, deleted: int) -> None:
        self.retention_sweeps_total.labels(outcome=outcome).inc()
        if deleted:
            self.retention_reports_deleted_total.inc(deleted)

    def get_metrics_response(self) -> Response:
        """Render the registry in Prometheus text format."""
        return Response(generate_latest(self.registry), mimetype=CONTENT_TYPE_LATEST)
