"""
MongoDB Connection
==================
Async connection wrapper for the document store holding the session record.

Features:
- Async client (pymongo AsyncMongoClient) with configured timeouts
- Ping / reconnect helpers used by the health monitor, never raising
- Lazy creation of the session collection
"""

from typing import Any, Optional

from pymongo import AsyncMongoClient
from pymongo.errors import CollectionInvalid, PyMongoError

from session_bridge.core.exceptions import PrereqNotMet, StoreUnavailable
from session_bridge.core.logger import get_logger
from session_bridge.core.utils import describe_error, redact_url
from session_bridge.domain.interfaces.storage import StoreConnection
from session_bridge.infrastructure.config.settings import StoreSettings

logger = get_logger("mongo_connection")


class MongoConnection(StoreConnection):
    """
    Owns the AsyncMongoClient.

    The connection URL is only ever logged through redact_url().
    """

    def __init__(self, settings: StoreSettings, client_cls: Any = AsyncMongoClient):
        self.settings = settings
        self._client_cls = client_cls
        self._client: Optional[Any] = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def client(self) -> Optional[Any]:
        return self._client

    @property
    def database(self):
        """Database named in the URL, or the configured default."""
        if self._client is None:
            raise StoreUnavailable("Document store is not connected")
        return self._client.get_default_database(default=self.settings.database)

    async def connect(self) -> None:
        """
        Create the client and verify it with a ping.

        Raises:
            PrereqNotMet: no connection URL configured
            StoreUnavailable: store did not answer the ping
        """
        if not self.settings.url:
            raise PrereqNotMet("MONGO_URL is not configured")

        if self._client is not None:
            logger.warning("mongo_connection.already_connected", {})
            return

        logger.info("mongo_connection.connecting", {"url": redact_url(self.settings.url)})

        self._client = self._client_cls(
            self.settings.url,
            serverSelectionTimeoutMS=self.settings.server_selection_timeout_ms,
            socketTimeoutMS=self.settings.socket_timeout_ms,
        )

        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            self._connected = False
            logger.error("mongo_connection.connect_failed", {
                "url": redact_url(self.settings.url),
                "error": redact_url(describe_error(e)),
            })
            await self._discard_client()
            raise StoreUnavailable("Document store is not reachable", cause=e) from e

        self._connected = True
        logger.info("mongo_connection.connected", {
            "url": redact_url(self.settings.url),
            "database": self.database.name,
        })

    async def ping(self) -> bool:
        if self._client is None:
            self._connected = False
            return False
        try:
            await self._client.admin.command("ping")
            self._connected = True
        except PyMongoError as e:
            self._connected = False
            logger.warning("mongo_connection.ping_failed", {"error": redact_url(describe_error(e))})
        return self._connected

    async def reconnect(self) -> bool:
        logger.warning("mongo_connection.reconnecting", {"url": redact_url(self.settings.url)})
        await self.close()
        try:
            await self.connect()
        except (StoreUnavailable, PrereqNotMet) as e:
            logger.error("mongo_connection.reconnect_failed", {"error": e.message})
            return False
        logger.info("mongo_connection.reconnected", {})
        return True

    async def close(self) -> None:
        if self._client is None:
            return
        await self._discard_client()
        logger.info("mongo_connection.closed", {})

    async def _discard_client(self) -> None:
        client = self._client
        self._client = None
        self._connected = False
        try:
            await client.close()
        except Exception as e:
            logger.warning("mongo_connection.close_failed", {"error": describe_error(e)})

    async def ensure_collection(self, name: str) -> None:
        """
        Create the collection if it is not there yet.

        Raises:
            StoreUnavailable: store cannot be reached
        """
        db = self.database
        try:
            existing = await db.list_collection_names()
            if name in existing:
                return
            await db.create_collection(name)
            logger.info("mongo_connection.collection_created", {"collection": name})
        except CollectionInvalid:
            # Created concurrently between list and create
            return
        except PyMongoError as e:
            raise StoreUnavailable(f"Cannot ensure collection {name}", cause=e) from e
