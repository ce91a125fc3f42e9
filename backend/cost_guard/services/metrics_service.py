import structlog

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)
from fastapi import Response

logger = structlog.get_logger(__name__)


class MetricsService:
    """Prometheus metrics for the API, the caches and the cost pipeline"""

    def __init__(self, registry=REGISTRY):
        self.registry = registry
        self._setup_metrics()

    def _setup_metrics(self):
        """Initialize Prometheus metrics"""

        # API Metrics
        self.http_requests_total = Counter(
            'http_requests_total',
            'Total number of HTTP requests',
            ['method', 'endpoint', 'status_code'],
            registry=self.registry
        )

        self.http_request_duration_seconds = Histogram(
            'http_request_duration_seconds',
            'HTTP request latency',
            ['method', 'endpoint'],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry
        )

        self.errors_total = Counter(
            'errors_total',
            'Total errors by type and component',
            ['error_type', 'component'],
            registry=self.registry
        )

        # Cache Metrics
        self.cache_operations_total = Counter(
            'cache_operations_total',
            'Total cache operations',
            ['cache', 'operation', 'status'],
            registry=self.registry
        )

        # AWS API Metrics
        self.aws_api_calls_total = Counter(
            'aws_api_calls_total',
            'Total AWS API calls',
            ['service', 'operation', 'status'],
            registry=self.registry
        )

        self.aws_api_duration_seconds = Histogram(
            'aws_api_duration_seconds',
            'AWS API call duration',
            ['service', 'operation'],
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry
        )

        self.aws_api_retries_total = Counter(
            'aws_api_retries_total',
            'AWS API calls retried after a transient failure',
            ['service', 'operation'],
            registry=self.registry
        )

        # Business Metrics
        self.csv_ingestions_total = Counter(
            'csv_ingestions_total',
            'CSV uploads processed',
            ['layout', 'status'],
            registry=self.registry
        )

        self.budget_alerts_total = Counter(
            'budget_alerts_total',
            'Budget notifications generated',
            ['severity'],
            registry=self.registry
        )

        self.share_accesses_total = Counter(
            'share_accesses_total',
            'Shared snapshot reads by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.active_shares = Gauge(
            'active_shares',
            'Shareable snapshots currently held',
            registry=self.registry
        )

    # Metric recording methods

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics"""
        self.http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self.http_request_duration_seconds.labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_error(self, error_type: str, component: str):
        self.errors_total.labels(error_type=error_type, component=component).inc()

    def record_cache_operation(self, cache: str, operation: str, status: str):
        """Record cache operation metrics"""
        self.cache_operations_total.labels(
            cache=cache,
            operation=operation,
            status=status
        ).inc()

    def record_aws_api_call(self, service: str, operation: str, status: str, duration: float):
        """Record AWS API call metrics"""
        self.aws_api_calls_total.labels(
            service=service,
            operation=operation,
            status=status
        ).inc()

        self.aws_api_duration_seconds.labels(
            service=service,
            operation=operation
        ).observe(duration)

    def record_aws_retry(self, service: str, operation: str):
        self.aws_api_retries_total.labels(service=service, operation=operation).inc()

    def record_csv_ingestion(self, layout: str, status: str):
        self.csv_ingestions_total.labels(layout=layout, status=status).inc()

    def record_budget_alert(self, severity: str):
        self.budget_alerts_total.labels(severity=severity).inc()

    def record_share_access(self, outcome: str):
        self.share_accesses_total.labels(outcome=outcome).inc()

    def update_active_shares(self, count: int):
        self.active_shares.set(count)

    def export_metrics(self) -> Response:
        """Export metrics in Prometheus format"""
        try:
            data = generate_latest(self.registry)
            return Response(content=data, media_type=CONTENT_TYPE_LATEST)
        except Exception as e:
            logger.error("Failed to export metrics", error=str(e))
            return Response(content="", media_type=CONTENT_TYPE_LATEST)


# Global metrics service instance
metrics_service = MetricsService()
