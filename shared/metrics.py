"""
Shared metrics configuration for the MiniGram services.
"""

from typing import Dict, Any, Optional
import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest


CACHE_DURATION_BUCKETS = (0.001, 0.01, 0.1, 0.5, 1, 2, 5)
HTTP_DURATION_BUCKETS = (0.01, 0.1, 0.5, 1, 2, 5, 10)


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so several service instances can live in
    one process (tests, scripts) without colliding on metric names.
    """

    def __init__(self, service_name: str, instance_id: str = "unknown", registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.instance_id = instance_id
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "instance": self.instance_id,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "route", "status_code", "instance"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "route", "status_code", "instance"],
            buckets=HTTP_DURATION_BUCKETS,
            registry=self.registry
        )

        self._metrics["active_connections"] = Gauge(
            "active_connections",
            "Number of active connections",
            ["instance"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_cache_metrics()
        self._setup_database_metrics()

    def _setup_cache_metrics(self):
        """Set up cache-layer metrics."""
        self._metrics["cache_hits_total"] = Counter(
            "cache_hits_total",
            "Total number of cache hits",
            ["cache_type", "instance"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "cache_misses_total",
            "Total number of cache misses",
            ["cache_type", "instance"],
            registry=self.registry
        )

        self._metrics["cache_errors_total"] = Counter(
            "cache_errors_total",
            "Cache operations that failed and were treated as misses",
            ["operation", "cache_type", "instance"],
            registry=self.registry
        )

        self._metrics["cache_operation_duration_seconds"] = Histogram(
            "cache_operation_duration_seconds",
            "Duration of cache operations",
            ["operation", "cache_type", "instance"],
            buckets=CACHE_DURATION_BUCKETS,
            registry=self.registry
        )

        self._metrics["cache_warm_total"] = Counter(
            "cache_warm_total",
            "Total cache warm runs",
            ["result", "instance"],
            registry=self.registry
        )

        self._metrics["cache_warm_duration_seconds"] = Histogram(
            "cache_warm_duration_seconds",
            "Cache warm run duration in seconds",
            ["instance"],
            registry=self.registry
        )

    def _setup_database_metrics(self):
        """Set up store-of-record metrics."""
        self._metrics["db_query_duration_seconds"] = Histogram(
            "db_query_duration_seconds",
            "Duration of database queries",
            ["query_type", "cached", "instance"],
            buckets=CACHE_DURATION_BUCKETS,
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def render(self) -> bytes:
        """Render the registry in Prometheus exposition format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, route: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        labels = {
            "method": method,
            "route": route,
            "status_code": str(status_code),
            "instance": self.instance_id,
        }
        self._metrics["http_requests_total"].labels(**labels).inc()
        self._metrics["http_request_duration_seconds"].labels(**labels).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    @contextmanager
    def time_operation(self, metric_name: str, **labels):
        """Context manager to time an operation into a histogram."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.observe_histogram(metric_name, time.perf_counter() - start_time, **labels)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)

    def sample(self, metric_name: str, **labels) -> Optional[float]:
        """Read back a single sample value from the registry."""
        return self.registry.get_sample_value(metric_name, labels)


def get_metrics_collector(service_name: str, instance_id: str = "unknown",
                          registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, instance_id, registry)
