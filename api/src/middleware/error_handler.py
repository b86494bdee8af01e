"""
Fallback error handling.

``ErrorHandlerMiddleware`` is registered innermost, directly around the
routes. Any exception a route raises is logged with its traceback and
answered through ``translate_error``; unknown exceptions always become
``500 {"status": "error", "message": "Something went wrong!"}``.

``register_exception_handlers`` renders the framework's own HTTP and
validation errors in the same envelope.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from api.src.errors import (
    GENERIC_ERROR_MESSAGE,
    ErrorKind,
    error_envelope,
    kind_for_status,
    translate_error,
)
from shared.metrics import HTTPMetrics

logger = structlog.get_logger(__name__)


def error_response(
    kind: ErrorKind,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Build a JSON error response for an error kind."""
    return JSONResponse(
        status_code=kind.http_status,
        content=error_envelope(message, details),
        headers=headers,
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Convert exceptions raised by route handlers into JSON responses."""

    def __init__(self, app, metrics: Optional[HTTPMetrics] = None):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            status_code, body = translate_error(exc)

            if status_code >= 500:
                logger.error(
                    "unhandled_request_error",
                    method=request.method,
                    path=request.url.path,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    exc_info=exc,
                )
                if self.metrics is not None:
                    self.metrics.unhandled_errors.labels(
                        error_type=type(exc).__name__
                    ).inc()
            else:
                logger.warning(
                    "request_error",
                    method=request.method,
                    path=request.url.path,
                    status_code=status_code,
                    error=str(exc),
                )

            return JSONResponse(status_code=status_code, content=body)


def _validation_details(exc: RequestValidationError) -> Dict[str, str]:
    """Flatten validation errors into a field -> message map."""
    details: Dict[str, str] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        field = ".".join(loc) or "body"
        details.setdefault(field, error.get("msg", "invalid value"))
    return details


def register_exception_handlers(app: FastAPI) -> None:
    """Register envelope renderers for framework-raised errors."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors."""
        logger.warning(
            "validation_error",
            path=request.url.path,
            errors=exc.errors(),
        )
        return error_response(
            ErrorKind.VALIDATION,
            "Invalid request data",
            details=_validation_details(exc),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions such as unmatched routes."""
        logger.warning(
            "http_exception",
            path=request.url.path,
            status_code=exc.status_code,
            detail=exc.detail,
        )
        kind = kind_for_status(exc.status_code)
        message = exc.detail if kind is not ErrorKind.INTERNAL else None
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(str(message) if message else GENERIC_ERROR_MESSAGE),
            headers=getattr(exc, "headers", None),
        )
