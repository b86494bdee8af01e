"""
Security headers middleware.

Sets the protective response headers helmet applies by default. It is the
outermost application middleware, so error responses produced further in
carry the headers as well.
"""

from typing import Dict, Mapping

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from api.src.config import Settings


def build_security_headers(settings: Settings) -> Dict[str, str]:
    """
    Build the header set from settings.

    Args:
        settings: Application settings

    Returns:
        Mapping of header name to value
    """
    headers = {
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cross-Origin-Resource-Policy": "same-origin",
        "Origin-Agent-Cluster": "?1",
        "Referrer-Policy": "no-referrer",
        "X-Content-Type-Options": "nosniff",
        "X-DNS-Prefetch-Control": "off",
        "X-Download-Options": "noopen",
        "X-Frame-Options": "SAMEORIGIN",
        "X-Permitted-Cross-Domain-Policies": "none",
        "X-XSS-Protection": "0",
    }

    if settings.security_csp:
        headers["Content-Security-Policy"] = settings.security_csp

    if settings.security_hsts_max_age > 0:
        headers["Strict-Transport-Security"] = (
            f"max-age={settings.security_hsts_max_age}; includeSubDomains"
        )

    return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to responses."""

    def __init__(self, app, headers: Mapping[str, str]):
        super().__init__(app)
        self.headers = dict(headers)

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        for name, value in self.headers.items():
            response.headers[name] = value

        if "x-powered-by" in response.headers:
            del response.headers["x-powered-by"]

        return response
