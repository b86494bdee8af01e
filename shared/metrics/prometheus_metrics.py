"""Prometheus metrics definitions and helpers.

Provides the HTTP metric set shared by the API middleware and the
``/metrics`` endpoint.
"""

from functools import lru_cache

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class HTTPMetrics:
    """HTTP server metrics."""

    def __init__(self, registry: CollectorRegistry = REGISTRY) -> None:
        """Initialize HTTP metrics.

        Args:
            registry: Prometheus registry to use
        """
        self.registry = registry

        self.requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status"],
            registry=registry,
        )

        self.request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=registry,
        )

        self.requests_in_progress = Gauge(
            "http_requests_in_progress",
            "HTTP requests currently in progress",
            ["method"],
            registry=registry,
        )

        self.unhandled_errors = Counter(
            "http_unhandled_errors_total",
            "Route errors answered by the fallback error handler",
            ["error_type"],
            registry=registry,
        )

        self.database_up = Gauge(
            "database_up",
            "1 if the last database ping succeeded, 0 otherwise",
            registry=registry,
        )

    def render(self) -> tuple[bytes, str]:
        """Render the registry in Prometheus text format.

        Returns:
            Tuple of (payload, content type)
        """
        return generate_latest(self.registry), CONTENT_TYPE_LATEST


@lru_cache()
def get_http_metrics() -> HTTPMetrics:
    """Return the process-wide metric set bound to the default registry."""
    return HTTPMetrics()
