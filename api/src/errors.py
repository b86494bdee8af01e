"""
Error taxonomy and HTTP translation.

Two error domains exist:
- Startup errors (``DatabaseError`` family) are fatal to the process.
- Request errors are translated to a JSON envelope by ``translate_error``.

Any exception that is not an ``ApiError`` maps to the generic 500 envelope,
so no internal detail reaches the client.
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple

from fastapi import status


GENERIC_ERROR_MESSAGE = "Something went wrong!"


class ErrorKind(str, Enum):
    """Kinds of recoverable request errors."""

    BAD_REQUEST = "bad_request"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    INTERNAL = "internal"

    @property
    def http_status(self) -> int:
        return _KIND_STATUS[self]


_KIND_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.VALIDATION: 422,
    ErrorKind.INTERNAL: 500,
}

_STATUS_KIND: Dict[int, ErrorKind] = {code: kind for kind, code in _KIND_STATUS.items()}


# ============================================================================
# Exceptions
# ============================================================================


class ServiceError(Exception):
    """Base exception for the service."""


class DatabaseError(ServiceError):
    """Database layer failure."""


class DatabaseConnectionError(DatabaseError):
    """The startup connection attempt failed."""


class DatabaseNotConnectedError(DatabaseError):
    """The handle was used before ``connect()`` succeeded."""


class ApiError(ServiceError):
    """
    Request error carrying a client-safe message.

    Route handlers raise this to answer with a specific status. ``INTERNAL``
    errors are still rendered with the generic message.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    @property
    def http_status(self) -> int:
        return self.kind.http_status


# ============================================================================
# Translation
# ============================================================================


def error_envelope(message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build the JSON body shared by every error response."""
    body: Dict[str, Any] = {"status": "error", "message": message}
    if details:
        body["details"] = details
    return body


def kind_for_status(status_code: int) -> ErrorKind:
    """Map an HTTP status onto the closest error kind."""
    if status_code in _STATUS_KIND:
        return _STATUS_KIND[status_code]
    if 400 <= status_code < 500:
        return ErrorKind.BAD_REQUEST
    return ErrorKind.INTERNAL


def translate_error(exc: BaseException) -> Tuple[int, Dict[str, Any]]:
    """
    Translate an exception into an HTTP status and response body.

    Args:
        exc: Exception raised while handling a request

    Returns:
        Tuple of (status code, JSON body)
    """
    if isinstance(exc, ApiError) and exc.kind is not ErrorKind.INTERNAL:
        return exc.http_status, error_envelope(exc.message, exc.details)

    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_envelope(GENERIC_ERROR_MESSAGE),
    )
