"""
Integration tests for the assembled application.

Drives the real middleware chain through FastAPI's TestClient with a test
route collaborator mounted under /api/v1.

Tests cover:
- Fallback error envelope for route errors (no detail leak)
- JSON and URL-encoded body parsing, malformed body rejection
- Security headers on success and error responses
- CORS headers and preflight
- Framework 404/422 rendering, default health/readiness routes
- Metrics endpoint, correlation IDs, database close on shutdown
"""

from typing import Any, List

import pytest
from fastapi import APIRouter, Depends
from fastapi.testclient import TestClient
from pydantic import BaseModel

from api.src.dependencies import get_request_body
from api.src.errors import ApiError, ErrorKind
from api.src.main import create_app


GENERIC_BODY = {"status": "error", "message": "Something went wrong!"}

SECURITY_HEADERS = {
    "x-content-type-options": "nosniff",
    "x-frame-options": "SAMEORIGIN",
    "referrer-policy": "no-referrer",
    "strict-transport-security": "max-age=15552000; includeSubDomains",
    "x-dns-prefetch-control": "off",
    "x-permitted-cross-domain-policies": "none",
}

FORM = "application/x-www-form-urlencoded"


class Item(BaseModel):
    """Typed request body for validation tests."""

    name: str
    quantity: int = 1


def build_test_router(received: List[Any]) -> APIRouter:
    """Route collaborator exercising every error domain."""
    router = APIRouter()

    @router.get("/boom")
    async def boom():
        raise RuntimeError("boom")

    @router.get("/sync-boom")
    def sync_boom():
        raise KeyError("internal_secret")

    @router.post("/echo")
    async def echo(body: Any = Depends(get_request_body)):
        received.append(body)
        return {"received": body}

    @router.post("/items")
    async def create_item(item: Item):
        received.append(item)
        return item

    @router.get("/missing")
    async def missing():
        raise ApiError(ErrorKind.NOT_FOUND, "Tenant not found", details={"tenant": "acme"})

    @router.get("/ok")
    async def ok():
        return {"ok": True}

    return router


@pytest.fixture
def received() -> List[Any]:
    return []


@pytest.fixture
def app(settings, fake_database, metrics, received):
    return create_app(
        settings,
        fake_database,
        routes=build_test_router(received),
        metrics=metrics,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


# ============================================================================
# Fallback error handler
# ============================================================================


class TestErrorEnvelope:
    """Route errors become a fixed 500 envelope."""

    def test_route_error_returns_generic_500(self, client):
        response = client.get("/api/v1/boom")

        assert response.status_code == 500
        assert response.json() == GENERIC_BODY
        assert "boom" not in response.text

    def test_sync_route_error_returns_generic_500(self, client):
        response = client.get("/api/v1/sync-boom")

        assert response.status_code == 500
        assert response.json() == GENERIC_BODY
        assert "internal_secret" not in response.text

    def test_process_keeps_serving_after_error(self, client):
        """Test a failing request does not affect later requests."""
        assert client.get("/api/v1/boom").status_code == 500
        response = client.get("/api/v1/ok")

        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_api_error_keeps_status_and_message(self, client):
        response = client.get("/api/v1/missing")

        assert response.status_code == 404
        assert response.json() == {
            "status": "error",
            "message": "Tenant not found",
            "details": {"tenant": "acme"},
        }

    def test_unhandled_error_counted(self, client, metrics):
        client.get("/api/v1/boom")

        value = metrics.registry.get_sample_value(
            "http_unhandled_errors_total", {"error_type": "RuntimeError"}
        )
        assert value == 1.0

    def test_unmatched_path_returns_404_envelope(self, client):
        response = client.get("/api/v1/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"status": "error", "message": "Not Found"}

    def test_wrong_method_returns_405(self, client):
        response = client.delete("/api/v1/ok")

        assert response.status_code == 405
        assert response.json()["status"] == "error"

    def test_validation_error_lists_fields(self, client, received):
        response = client.post("/api/v1/items", json={"quantity": 2})

        assert response.status_code == 422
        body = response.json()
        assert body["status"] == "error"
        assert body["message"] == "Invalid request data"
        assert "name" in body["details"]
        assert received == []


# ============================================================================
# Body parsing
# ============================================================================


class TestJSONBody:
    """JSON body parsing."""

    def test_json_body_parsed(self, client, received):
        payload = {"user": {"name": "Ada"}, "tags": ["a", "b"]}

        response = client.post("/api/v1/echo", json=payload)

        assert response.status_code == 200
        assert response.json() == {"received": payload}
        assert received == [payload]

    def test_json_array_accepted(self, client, received):
        response = client.post("/api/v1/echo", json=[1, 2, 3])

        assert response.status_code == 200
        assert received == [[1, 2, 3]]

    def test_vendor_json_type_parsed(self, client, received):
        response = client.post(
            "/api/v1/echo",
            content='{"a": 1}',
            headers={"Content-Type": "application/vnd.api+json"},
        )

        assert response.status_code == 200
        assert received == [{"a": 1}]

    def test_malformed_json_rejected_before_route(self, client, received):
        response = client.post(
            "/api/v1/echo",
            content='{"user": ',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["status"] == "error"
        assert received == []

    def test_scalar_json_rejected_in_strict_mode(self, client, received):
        response = client.post(
            "/api/v1/echo",
            content='"just a string"',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert received == []

    def test_empty_json_body_is_empty_object(self, client, received):
        response = client.post(
            "/api/v1/echo",
            content=b"",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert received == [{}]

    def test_oversized_json_rejected(self, client, settings, received):
        big = '{"data": "' + "x" * (settings.body_limit_bytes + 1) + '"}'

        response = client.post(
            "/api/v1/echo",
            content=big,
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 413
        assert received == []

    def test_typed_route_still_reads_body(self, client, received):
        """Test the body stays readable for FastAPI models after parsing."""
        response = client.post("/api/v1/items", json={"name": "widget", "quantity": 3})

        assert response.status_code == 200
        assert response.json() == {"name": "widget", "quantity": 3}

    def test_no_body_defaults_to_empty_object(self, client, received):
        response = client.post("/api/v1/echo")

        assert response.status_code == 200
        assert received == [{}]

    def test_whitespace_only_body_rejected(self, client, received):
        response = client.post(
            "/api/v1/echo",
            content=b"  \n ",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert received == []

    @pytest.mark.parametrize("constant", ["NaN", "Infinity", "-Infinity"])
    def test_non_standard_constants_rejected(self, client, received, constant):
        response = client.post(
            "/api/v1/echo",
            content=f'{{"value": {constant}}}',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Malformed JSON in request body"
        assert received == []

    def test_chunked_body_within_limit_parsed(self, client, received):
        """Test a body sent without Content-Length still reaches the route."""
        def chunks():
            yield b'{"user": '
            yield b'{"name": "Ada"}}'

        response = client.post(
            "/api/v1/echo",
            content=chunks(),
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert received == [{"user": {"name": "Ada"}}]

    def test_chunked_oversized_body_rejected(self, client, settings, received):
        def chunks():
            for _ in range(4):
                yield b"x" * settings.body_limit_bytes

        response = client.post(
            "/api/v1/echo",
            content=chunks(),
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 413
        assert response.json() == {"status": "error", "message": "Request entity too large"}
        assert received == []


class TestURLEncodedBody:
    """Extended URL-encoded body parsing."""

    def test_nested_form_parsed(self, client, received):
        response = client.post(
            "/api/v1/echo",
            content="a[b][c]=1&list[]=x&list[]=y&name=Ada+Lovelace",
            headers={"Content-Type": FORM},
        )

        assert response.status_code == 200
        assert received == [{
            "a": {"b": {"c": "1"}},
            "list": ["x", "y"],
            "name": "Ada Lovelace",
        }]

    def test_too_many_parameters_rejected(self, client, settings, received):
        body = "&".join(f"f{i}=v" for i in range(settings.form_parameter_limit + 1))

        response = client.post(
            "/api/v1/echo",
            content=body,
            headers={"Content-Type": FORM},
        )

        assert response.status_code == 413
        assert received == []

    @pytest.mark.parametrize(
        "body,expected",
        [
            ("a[%C2%B2]=1", {"a": {"\u00b2": "1"}}),
            ("a[" + "9" * 5000 + "]=1", {"a": {"9" * 5000: "1"}}),
        ],
        ids=["unicode-digit", "huge-digit"],
    )
    def test_digit_like_keys_kept_as_object_keys(self, client, received, body, expected):
        response = client.post(
            "/api/v1/echo",
            content=body,
            headers={"Content-Type": FORM},
        )

        assert response.status_code == 200
        assert response.headers["x-content-type-options"] == "nosniff"
        assert received == [expected]


# ============================================================================
# Security headers and CORS
# ============================================================================


class TestSecurityHeaders:
    """Protective headers on every response."""

    @pytest.mark.parametrize(
        "method,path,expected_status",
        [
            ("GET", "/api/v1/ok", 200),
            ("GET", "/api/v1/boom", 500),
            ("GET", "/api/v1/nowhere", 404),
            ("GET", "/api/v1/missing", 404),
        ],
    )
    def test_headers_present(self, client, method, path, expected_status):
        response = client.request(method, path)

        assert response.status_code == expected_status
        for name, value in SECURITY_HEADERS.items():
            assert response.headers[name] == value
        assert "content-security-policy" in response.headers

    def test_headers_on_malformed_body_rejection(self, client):
        response = client.post(
            "/api/v1/echo",
            content="{",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_headers_can_be_disabled(self, settings, fake_database, metrics, received):
        settings = settings.model_copy(update={"security_headers_enabled": False})
        app = create_app(settings, fake_database, build_test_router(received), metrics)

        with TestClient(app) as client:
            response = client.get("/api/v1/ok")

        assert "x-frame-options" not in response.headers


class TestCORS:
    """Permissive cross-origin policy."""

    def test_simple_request_allows_any_origin(self, client):
        response = client.get("/api/v1/ok", headers={"Origin": "https://example.com"})

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    def test_preflight_answered(self, client, received):
        response = client.options(
            "/api/v1/echo",
            headers={
                "Origin": "https://example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]
        assert response.headers["x-content-type-options"] == "nosniff"
        assert received == []

    def test_restricted_origins(self, settings, fake_database, metrics, received):
        settings = settings.model_copy(update={"cors_origins": ["https://app.example.com"]})
        app = create_app(settings, fake_database, build_test_router(received), metrics)

        with TestClient(app) as client:
            allowed = client.get("/api/v1/ok", headers={"Origin": "https://app.example.com"})
            denied = client.get("/api/v1/ok", headers={"Origin": "https://evil.example.com"})

        assert allowed.headers["access-control-allow-origin"] == "https://app.example.com"
        assert "access-control-allow-origin" not in denied.headers


# ============================================================================
# Application surface
# ============================================================================


class TestApplicationSurface:
    """Prefix mounting, probes, metrics and lifecycle."""

    def test_routes_only_under_prefix(self, client):
        assert client.get("/ok").status_code == 404
        assert client.get("/api/v1/ok").status_code == 200

    def test_correlation_id_echoed(self, client):
        response = client.get("/api/v1/ok", headers={"X-Correlation-ID": "req-123"})
        assert response.headers["x-correlation-id"] == "req-123"

    def test_correlation_id_generated(self, client):
        response = client.get("/api/v1/ok")
        assert response.headers["x-correlation-id"]

    def test_metrics_endpoint(self, client, fake_database):
        client.get("/api/v1/ok")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert 'endpoint="/api/v1/ok"' in response.text
        assert "database_up 1.0" in response.text

    def test_metrics_can_be_disabled(self, settings, fake_database, received):
        settings = settings.model_copy(update={"metrics_enabled": False})
        app = create_app(settings, fake_database, build_test_router(received))

        with TestClient(app) as client:
            assert client.get("/metrics").status_code == 404

    def test_database_closed_on_shutdown(self, app, fake_database):
        with TestClient(app):
            fake_database.close.assert_not_awaited()

        fake_database.close.assert_awaited_once()

    def test_database_shared_through_app_state(self, app, fake_database):
        assert app.state.database is fake_database


class TestDefaultRoutes:
    """Health and readiness probes shipped with the default router."""

    @pytest.fixture
    def default_client(self, settings, fake_database, metrics):
        app = create_app(settings, fake_database, metrics=metrics)
        with TestClient(app) as client:
            yield client

    def test_health(self, default_client, settings):
        response = default_client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["service"] == settings.app_name

    def test_ready_when_database_answers(self, default_client):
        response = default_client.get("/api/v1/ready")

        assert response.status_code == 200
        assert response.json()["checks"] == {"database": "healthy"}

    def test_not_ready_when_database_down(self, default_client, fake_database):
        fake_database.ping.return_value = False

        response = default_client.get("/api/v1/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_unknown_path_under_prefix(self, default_client):
        response = default_client.get("/api/v1/unknown")

        assert response.status_code == 404
        assert response.json()["status"] == "error"
