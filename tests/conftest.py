"""Shared fixtures for unit and integration tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import CollectorRegistry

from api.src.config import Settings
from api.src.database import MongoDatabase
from shared.metrics import HTTPMetrics


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the process environment and any .env file."""
    return Settings(
        _env_file=None,
        port=3000,
        mongodb_uri="mongodb://localhost:27017/app",
        log_level="DEBUG",
        log_format="text",
    )


@pytest.fixture
def fake_database() -> MagicMock:
    """MongoDB handle double that is always reachable."""
    database = MagicMock(spec=MongoDatabase)
    database.connect = AsyncMock()
    database.ping = AsyncMock(return_value=True)
    database.close = AsyncMock()
    return database


@pytest.fixture
def metrics() -> HTTPMetrics:
    """Metric set on a private registry so apps can be built repeatedly."""
    return HTTPMetrics(registry=CollectorRegistry())
