"""
Route collaborator mounted under the API prefix.

Application endpoints are added to ``router``; the bootstrapper mounts it
with ``include_router(router, prefix=settings.api_prefix)``. Only health and
readiness probes ship here.
"""

from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from api.src.config import Settings
from api.src.database import MongoDatabase
from api.src.dependencies import get_app_settings, get_database

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health", tags=["Health"])
async def health_check(settings: Settings = Depends(get_app_settings)) -> Dict[str, Any]:
    """
    Liveness probe.

    Returns basic health status without checking dependencies.
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready", tags=["Health"])
async def readiness_check(
    settings: Settings = Depends(get_app_settings),
    database: MongoDatabase = Depends(get_database),
) -> JSONResponse:
    """
    Readiness probe.

    Returns 503 when the database does not answer a ping.
    """
    database_ok = await database.ping()
    checks = {"database": "healthy" if database_ok else "unhealthy"}

    if not database_ok:
        logger.warning("readiness_check_failed", checks=checks)

    return JSONResponse(
        status_code=status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if database_ok else "not_ready",
            "service": settings.app_name,
            "checks": checks,
        },
    )
