"""
Request body parsing middleware.

Both parsers store their result on ``request.state.body`` (``{}`` when the
request carries no body of their type), so route handlers see one structured
body regardless of encoding. Invalid bodies are answered here and never reach
a route.
"""

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import parse_qsl

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from api.src.errors import ErrorKind
from api.src.middleware.error_handler import error_response

logger = structlog.get_logger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# qs defaults used by extended form parsing
FORM_MAX_DEPTH = 5
FORM_ARRAY_LIMIT = 20

_KEY_SEGMENT = re.compile(r"\[([^\[\]]*)\]")

# Longer digit keys are kept as object keys
_MAX_INDEX_DIGITS = 10


def media_type(content_type: Optional[str]) -> str:
    """Return the lower-cased media type without parameters."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def is_json_media_type(content_type: Optional[str]) -> bool:
    """Match application/json and application/*+json."""
    mtype = media_type(content_type)
    return mtype == "application/json" or (
        mtype.startswith("application/") and mtype.endswith("+json")
    )


def _charset(content_type: Optional[str], default: str = "utf-8") -> str:
    if not content_type:
        return default
    for param in content_type.split(";")[1:]:
        name, _, value = param.partition("=")
        if name.strip().lower() == "charset" and value.strip():
            return value.strip().strip('"').lower()
    return default


def _declared_length(request: Request) -> Optional[int]:
    value = request.headers.get("content-length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _ensure_default_body(request: Request) -> None:
    if getattr(request.state, "body", None) is None:
        request.state.body = {}


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Invalid JSON constant: {name}")


class BodyTooLargeError(Exception):
    """Raised once more than the allowed number of body bytes was received."""

    def __init__(self, received: int, limit: int):
        super().__init__(f"Request body exceeds {limit} bytes")
        self.received = received
        self.limit = limit


async def read_body(request: Request, limit: int) -> bytes:
    """
    Read the request body, stopping as soon as it grows past ``limit``.

    The body is cached on the request the same way ``Request.body()`` does,
    so handlers further down the chain can still read it.

    Raises:
        BodyTooLargeError: Content-Length or the received bytes exceed ``limit``
    """
    declared = _declared_length(request)
    if declared is not None and declared > limit:
        raise BodyTooLargeError(declared, limit)

    chunks: List[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise BodyTooLargeError(received, limit)
        chunks.append(chunk)

    body = b"".join(chunks)
    request._body = body
    return body


# ============================================================================
# Extended form parsing
# ============================================================================


def split_form_key(key: str, depth: int = FORM_MAX_DEPTH) -> List[str]:
    """
    Split a bracketed form key into path segments.

    ``a[b][c]`` -> ``["a", "b", "c"]``; ``list[]`` -> ``["list", ""]``.
    Segments beyond ``depth`` are kept together as one literal key.
    Keys without a well-formed bracket group are returned whole.
    """
    bracket = key.find("[")
    if bracket <= 0:
        return [key]

    segments = [key[:bracket]]
    pos = bracket
    while len(segments) <= depth:
        match = _KEY_SEGMENT.match(key, pos)
        if not match:
            break
        segments.append(match.group(1))
        pos = match.end()

    if len(segments) == 1:
        return [key]
    if pos < len(key):
        segments.append(key[pos:])
    return segments


def _is_index(key: str) -> bool:
    """ASCII decimal key short enough to be an array index."""
    return key.isascii() and key.isdigit() and len(key) <= _MAX_INDEX_DIGITS


def _next_index(node: Dict[str, Any]) -> str:
    indexes = [int(k) for k in node if _is_index(k)]
    return str(max(indexes) + 1 if indexes else 0)


def _assign(node: Dict[str, Any], segments: List[str], value: str) -> None:
    for i, segment in enumerate(segments):
        if segment == "":
            segment = _next_index(node)
        last = i == len(segments) - 1

        if last:
            existing = node.get(segment)
            if existing is None:
                node[segment] = value
            elif isinstance(existing, list):
                existing.append(value)
            elif isinstance(existing, dict):
                existing[_next_index(existing)] = value
            else:
                node[segment] = [existing, value]
            return

        child = node.get(segment)
        if isinstance(child, list):
            child = {str(idx): item for idx, item in enumerate(child)}
            node[segment] = child
        elif child is not None and not isinstance(child, dict):
            child = {"0": child}
            node[segment] = child
        elif child is None:
            child = {}
            node[segment] = child
        node = child


def _compact(value: Any) -> Any:
    """Turn dicts keyed only by small indexes into lists, recursively."""
    if isinstance(value, list):
        return [_compact(item) for item in value]
    if not isinstance(value, dict):
        return value

    compacted = {key: _compact(item) for key, item in value.items()}
    if compacted and all(
        _is_index(key) and int(key) <= FORM_ARRAY_LIMIT for key in compacted
    ):
        return [compacted[key] for key in sorted(compacted, key=int)]
    return compacted


def parse_nested_form(
    pairs: Iterable[Tuple[str, str]],
    depth: int = FORM_MAX_DEPTH,
) -> Dict[str, Any]:
    """
    Build a nested structure from decoded form pairs.

    Example:
        >>> parse_nested_form([("a[b]", "1"), ("tags[]", "x"), ("tags[]", "y")])
        {'a': {'b': '1'}, 'tags': ['x', 'y']}
    """
    result: Dict[str, Any] = {}
    for key, value in pairs:
        _assign(result, split_form_key(key, depth), value)

    return {key: _compact(item) for key, item in result.items()}


# ============================================================================
# Middleware
# ============================================================================


def _too_large(request: Request, error: BodyTooLargeError) -> Response:
    logger.warning(
        "request_body_too_large",
        path=request.url.path,
        received=error.received,
        limit=error.limit,
    )
    return error_response(ErrorKind.PAYLOAD_TOO_LARGE, "Request entity too large")


class JSONBodyMiddleware(BaseHTTPMiddleware):
    """
    Parse JSON request bodies into ``request.state.body``.

    In strict mode only objects and arrays are accepted at the top level.
    Zero-length bodies parse to ``{}``.
    """

    def __init__(self, app, limit: int = 100 * 1024, strict: bool = True):
        super().__init__(app)
        self.limit = limit
        self.strict = strict

    async def dispatch(self, request: Request, call_next) -> Response:
        content_type = request.headers.get("content-type")
        if not is_json_media_type(content_type):
            _ensure_default_body(request)
            return await call_next(request)

        try:
            raw = await read_body(request, self.limit)
        except BodyTooLargeError as e:
            return _too_large(request, e)

        if len(raw) == 0:
            request.state.body = {}
            return await call_next(request)

        parsed: Union[Dict[str, Any], List[Any]]
        try:
            parsed = json.loads(
                raw.decode(_charset(content_type)),
                parse_constant=_reject_constant,
            )
        except (UnicodeDecodeError, LookupError, ValueError) as e:
            logger.warning(
                "malformed_json_body",
                method=request.method,
                path=request.url.path,
                error=str(e),
            )
            return error_response(ErrorKind.BAD_REQUEST, "Malformed JSON in request body")

        if self.strict and not isinstance(parsed, (dict, list)):
            logger.warning(
                "json_body_not_object",
                method=request.method,
                path=request.url.path,
            )
            return error_response(
                ErrorKind.BAD_REQUEST,
                "JSON body must be an object or an array",
            )

        request.state.body = parsed
        return await call_next(request)


class URLEncodedBodyMiddleware(BaseHTTPMiddleware):
    """Parse ``application/x-www-form-urlencoded`` bodies with nested keys."""

    def __init__(
        self,
        app,
        limit: int = 100 * 1024,
        parameter_limit: int = 1000,
        depth: int = FORM_MAX_DEPTH,
    ):
        super().__init__(app)
        self.limit = limit
        self.parameter_limit = parameter_limit
        self.depth = depth

    async def dispatch(self, request: Request, call_next) -> Response:
        content_type = request.headers.get("content-type")
        if media_type(content_type) != FORM_CONTENT_TYPE:
            _ensure_default_body(request)
            return await call_next(request)

        try:
            raw = await read_body(request, self.limit)
        except BodyTooLargeError as e:
            return _too_large(request, e)

        try:
            text = raw.decode(_charset(content_type))
        except (UnicodeDecodeError, LookupError):
            return error_response(ErrorKind.BAD_REQUEST, "Malformed form body")

        try:
            pairs = parse_qsl(
                text,
                keep_blank_values=True,
                max_num_fields=self.parameter_limit,
            )
        except ValueError:
            logger.warning(
                "form_parameter_limit_exceeded",
                path=request.url.path,
                limit=self.parameter_limit,
            )
            return error_response(ErrorKind.PAYLOAD_TOO_LARGE, "Too many parameters")

        request.state.body = parse_nested_form(pairs, self.depth)
        return await call_next(request)
