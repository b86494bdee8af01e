"""
MongoDB connection handle.

One ``MongoDatabase`` is created at startup, connected before the listener
starts, and stored on ``app.state.database`` so route handlers receive it
through dependency injection instead of a module-level singleton.
"""

from typing import Any, Dict, Optional

import structlog
from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import ConfigurationError, PyMongoError

from api.src.errors import DatabaseConnectionError, DatabaseNotConnectedError

logger = structlog.get_logger(__name__)


def redact_uri(uri: str) -> str:
    """Strip credentials from a connection string for logging."""
    scheme, sep, rest = uri.partition("://")
    if not sep:
        return uri
    netloc, slash, path = rest.partition("/")
    if "@" in netloc:
        netloc = "***@" + netloc.rsplit("@", 1)[1]
    return f"{scheme}{sep}{netloc}{slash}{path}"


class MongoDatabase:
    """Owns the MongoDB client for the lifetime of the process."""

    def __init__(
        self,
        uri: Optional[str],
        server_selection_timeout_ms: int = 30000,
        database_name: Optional[str] = None,
        app_name: Optional[str] = None,
    ):
        """
        Initialize the handle without connecting.

        Args:
            uri: MongoDB connection string (None when unset)
            server_selection_timeout_ms: Driver server selection timeout
            database_name: Database used when the URI names none
            app_name: Client application name reported to the server
        """
        self.uri = uri
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.database_name = database_name
        self.app_name = app_name
        self._client: Optional[AsyncMongoClient] = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> AsyncMongoClient:
        if self._client is None:
            raise DatabaseNotConnectedError("MongoDB client is not connected")
        return self._client

    @property
    def db(self) -> AsyncDatabase:
        """Database named by the URI, or ``database_name`` as a fallback."""
        client = self.client
        try:
            return client.get_default_database(default=self.database_name)
        except ConfigurationError as e:
            raise DatabaseNotConnectedError(
                "No database named in MONGODB_URI and MONGODB_DATABASE is unset"
            ) from e

    def _client_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
        }
        if self.app_name:
            options["appname"] = self.app_name
        return options

    async def connect(self) -> None:
        """
        Open the client and verify the server answers a ping.

        Raises:
            DatabaseConnectionError: URI missing, invalid, or server unreachable
        """
        if self._client is not None:
            return

        if not self.uri:
            raise DatabaseConnectionError("MONGODB_URI is not set")

        logger.info(
            "database_connecting",
            uri=redact_uri(self.uri),
            server_selection_timeout_ms=self.server_selection_timeout_ms,
        )

        try:
            client: AsyncMongoClient = AsyncMongoClient(self.uri, **self._client_options())
        except (PyMongoError, ValueError) as e:
            raise DatabaseConnectionError(f"Invalid MongoDB URI: {e}") from e

        try:
            await client.admin.command("ping")
        except PyMongoError as e:
            await client.close()
            raise DatabaseConnectionError(str(e)) from e

        self._client = client

    async def ping(self) -> bool:
        """Readiness check; never raises."""
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.error("database_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the client. Safe to call more than once."""
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.close()
        logger.info("database_closed")
