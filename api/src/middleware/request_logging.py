"""
Request logging and metrics middleware.

Outermost middleware: assigns a correlation ID, logs request start and
completion, and records Prometheus request metrics.
"""

import time
import uuid
from typing import Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from shared.logging import bind_context, unbind_context
from shared.metrics import HTTPMetrics

logger = structlog.get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
UNMATCHED_ENDPOINT = "<unmatched>"


def endpoint_label(request: Request) -> str:
    """Route template for metric labels, keeping label cardinality bounded."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or UNMATCHED_ENDPOINT


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request logging and metrics."""

    def __init__(self, app, metrics: Optional[HTTPMetrics] = None):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next) -> Response:
        """Process request and log details."""
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())

        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"

        bind_context(correlation_id=correlation_id)
        if self.metrics is not None:
            self.metrics.requests_in_progress.labels(method=method).inc()
        start_time = time.perf_counter()

        logger.info(
            "request_started",
            method=method,
            path=path,
            client_ip=client_ip,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=method,
                path=path,
                error=str(e),
                duration=f"{time.perf_counter() - start_time:.3f}s",
                exc_info=True,
            )
            raise
        finally:
            unbind_context("correlation_id")
            if self.metrics is not None:
                self.metrics.requests_in_progress.labels(method=method).dec()

        duration = time.perf_counter() - start_time

        if self.metrics is not None:
            endpoint = endpoint_label(request)
            self.metrics.requests_total.labels(
                method=method,
                endpoint=endpoint,
                status=response.status_code,
            ).inc()
            self.metrics.request_duration.labels(
                method=method,
                endpoint=endpoint,
            ).observe(duration)

        logger.info(
            "request_completed",
            method=method,
            path=path,
            status_code=response.status_code,
            duration=f"{duration:.3f}s",
            correlation_id=correlation_id,
        )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
