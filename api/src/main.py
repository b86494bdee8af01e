"""
Process entry point: builds the FastAPI application and starts the listener.

Startup sequence:
1. Load settings and configure logging
2. Build the application and its middleware chain
3. Mount the route collaborator under the API prefix
4. Install the fallback error handler around the routes
5. Connect to MongoDB, and only then bind the listener

A failed database connection is fatal: it is logged and the process exits
with status 1 without ever accepting traffic.
"""

import asyncio
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List, Optional

import structlog
import uvicorn
from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from api.src.config import Settings, get_settings
from api.src.database import MongoDatabase
from api.src.errors import DatabaseConnectionError
from api.src.middleware import (
    ErrorHandlerMiddleware,
    JSONBodyMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    URLEncodedBodyMiddleware,
    build_security_headers,
    register_exception_handlers,
)
from shared.logging import configure_logging
from shared.metrics import HTTPMetrics, get_http_metrics

logger = structlog.get_logger(__name__)


# ============================================================================
# Application Factory
# ============================================================================

def configure_middleware(app: FastAPI, settings: Settings, metrics: Optional[HTTPMetrics]) -> None:
    """
    Attach the middleware chain.

    Request order, outermost first: request logging, security headers, CORS,
    JSON body, URL-encoded body, fallback error handler, routes. Starlette runs
    the last-added middleware first, so they are added innermost first.
    """
    app.add_middleware(ErrorHandlerMiddleware, metrics=metrics)

    app.add_middleware(
        URLEncodedBodyMiddleware,
        limit=settings.body_limit_bytes,
        parameter_limit=settings.form_parameter_limit,
    )
    app.add_middleware(JSONBodyMiddleware, limit=settings.body_limit_bytes)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    if settings.security_headers_enabled:
        app.add_middleware(
            SecurityHeadersMiddleware,
            headers=build_security_headers(settings),
        )

    app.add_middleware(RequestLoggingMiddleware, metrics=metrics)


def create_app(
    settings: Settings,
    database: MongoDatabase,
    routes: Optional[APIRouter] = None,
    metrics: Optional[HTTPMetrics] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings
        database: MongoDB handle, shared with route handlers via app.state
        routes: Route collaborator (defaults to ``api.src.routes.router``)
        metrics: Prometheus metric set (defaults to the process-wide one)

    Returns:
        Configured application; nothing is bound or connected here
    """
    if routes is None:
        from api.src.routes import router as routes
    if metrics is None and settings.metrics_enabled:
        metrics = get_http_metrics()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        yield
        logger.info("application_shutting_down")
        await database.close()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.metrics = metrics

    configure_middleware(app, settings, metrics)
    register_exception_handlers(app)

    app.include_router(routes, prefix=settings.api_prefix)

    if settings.metrics_enabled and metrics is not None:
        @app.get("/metrics", tags=["Monitoring"], include_in_schema=False)
        async def metrics_endpoint(request: Request) -> Response:
            """Prometheus metrics endpoint."""
            metrics.database_up.set(1 if await request.app.state.database.ping() else 0)
            payload, content_type = metrics.render()
            return Response(content=payload, media_type=content_type)

    return app


# ============================================================================
# Server
# ============================================================================

class ListeningServer(uvicorn.Server):
    """Uvicorn server that logs once its sockets are bound."""

    async def startup(self, sockets: Optional[List] = None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            logger.info(f"Server is running on port {self.config.port}", port=self.config.port)


def build_server(app: FastAPI, settings: Settings) -> ListeningServer:
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=settings.log_level.lower(),
        server_header=False,
    )
    return ListeningServer(config)


async def bootstrap(settings: Settings) -> int:
    """
    Build the app, connect to MongoDB, then serve until terminated.

    Returns:
        Process exit status: 1 when the database connection fails
    """
    database = MongoDatabase(
        settings.mongodb_uri,
        server_selection_timeout_ms=settings.mongodb_server_selection_timeout_ms,
        database_name=settings.mongodb_database,
        app_name=settings.app_name,
    )
    app = create_app(settings, database)

    try:
        await database.connect()
    except DatabaseConnectionError as e:
        logger.error("Error connecting to MongoDB", error=str(e), exc_info=True)
        return 1

    logger.info("Connected to MongoDB")

    server = build_server(app, settings)
    await server.serve()
    # uvicorn returns without starting when the port cannot be bound
    return 0 if server.started else 1


def main() -> None:
    """Console entry point."""
    settings = get_settings()

    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.json_logs,
        service_name=settings.app_name,
        environment=settings.environment,
    )

    logger.info(
        "application_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        port=settings.port,
    )

    sys.exit(asyncio.run(bootstrap(settings)))


if __name__ == "__main__":
    main()
