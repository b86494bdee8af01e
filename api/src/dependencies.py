"""
FastAPI dependency injection for shared application resources.

Provides injectable dependencies for:
- Application settings
- The MongoDB handle connected at startup
- The request body parsed by the body-parsing middleware

Resources live on ``app.state`` and are handed to route handlers from there.
"""

from typing import Any

from fastapi import Request
from pymongo.asynchronous.database import AsyncDatabase

from api.src.config import Settings
from api.src.database import MongoDatabase


def get_app_settings(request: Request) -> Settings:
    """Settings the application was built with."""
    return request.app.state.settings


def get_database(request: Request) -> MongoDatabase:
    """
    Get the MongoDB handle.

    Usage:
        @router.get("/items")
        async def list_items(database: MongoDatabase = Depends(get_database)):
            ...
    """
    return request.app.state.database


def get_mongo_db(request: Request) -> AsyncDatabase:
    """Default database of the connected client."""
    return get_database(request).db


def get_request_body(request: Request) -> Any:
    """Body parsed by the JSON or URL-encoded middleware (``{}`` if none)."""
    body = getattr(request.state, "body", None)
    return {} if body is None else body
