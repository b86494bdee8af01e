"""Metrics module using Prometheus."""

from .prometheus_metrics import (
    HTTPMetrics,
    get_http_metrics,
)

__all__ = [
    "HTTPMetrics",
    "get_http_metrics",
]
