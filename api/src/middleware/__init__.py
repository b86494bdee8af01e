"""FastAPI middleware components.

This package contains the middleware chain wrapped around the mounted routes:
request logging, security headers, body parsing, and fallback error handling.
"""

from api.src.middleware.body_parsing import (
    JSONBodyMiddleware,
    URLEncodedBodyMiddleware,
    parse_nested_form,
)
from api.src.middleware.error_handler import (
    ErrorHandlerMiddleware,
    error_response,
    register_exception_handlers,
)
from api.src.middleware.request_logging import RequestLoggingMiddleware
from api.src.middleware.security_headers import (
    SecurityHeadersMiddleware,
    build_security_headers,
)

__all__ = [
    # Body parsing
    "JSONBodyMiddleware",
    "URLEncodedBodyMiddleware",
    "parse_nested_form",
    # Error handling
    "ErrorHandlerMiddleware",
    "error_response",
    "register_exception_handlers",
    # Logging and metrics
    "RequestLoggingMiddleware",
    # Security headers
    "SecurityHeadersMiddleware",
    "build_security_headers",
]
