"""
MongoDB Session Store
=====================
Session record adapter: one document `{_id: <session-name>, data: <blob>}`
per deployment in a fixed collection.

Driver errors are translated here:
- connectivity faults        -> StoreUnavailable
- other write faults         -> StoreWriteFailed
- missing collection/record  -> None on read
"""

from typing import Any, Optional

from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    NetworkTimeout,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
)

from session_bridge.core.exceptions import StoreUnavailable, StoreWriteFailed
from session_bridge.core.logger import get_logger
from session_bridge.core.utils import describe_error
from session_bridge.domain.interfaces.storage import SessionStore
from session_bridge.infrastructure.store.mongo_connection import MongoConnection

logger = get_logger("mongo_session_store")

CONNECTIVITY_ERRORS = (ConnectionFailure, ServerSelectionTimeoutError, AutoReconnect, NetworkTimeout)

# Server error codes meaning "namespace does not exist"
NAMESPACE_NOT_FOUND_CODES = {26}


class MongoSessionStore(SessionStore):
    """Upsert-by-name store for the opaque session blob."""

    def __init__(self, connection: MongoConnection, collection_name: str):
        self.connection = connection
        self.collection_name = collection_name

    def _collection(self):
        # Raises StoreUnavailable while disconnected
        return self.connection.database[self.collection_name]

    async def save(self, session_name: str, blob: Any) -> None:
        collection = self._collection()
        try:
            await collection.replace_one(
                {"_id": session_name},
                {"_id": session_name, "data": blob},
                upsert=True,
            )
        except CONNECTIVITY_ERRORS as e:
            raise StoreUnavailable("Document store is not reachable", cause=e) from e
        except PyMongoError as e:
            raise StoreWriteFailed(f"Session save rejected: {describe_error(e)}", cause=e) from e

        logger.debug("mongo_session_store.saved", {
            "collection": self.collection_name,
            "session_name": session_name,
        })

    async def extract(self, session_name: str) -> Optional[Any]:
        collection = self._collection()
        try:
            document = await collection.find_one({"_id": session_name})
        except CONNECTIVITY_ERRORS as e:
            raise StoreUnavailable("Document store is not reachable", cause=e) from e
        except OperationFailure as e:
            if e.code in NAMESPACE_NOT_FOUND_CODES:
                return None
            raise StoreUnavailable(f"Session read failed: {describe_error(e)}", cause=e) from e

        if not document:
            return None
        return document.get("data")

    async def delete(self, session_name: str) -> bool:
        collection = self._collection()
        try:
            result = await collection.delete_one({"_id": session_name})
        except CONNECTIVITY_ERRORS as e:
            raise StoreUnavailable("Document store is not reachable", cause=e) from e
        except OperationFailure as e:
            if e.code in NAMESPACE_NOT_FOUND_CODES:
                return False
            raise StoreWriteFailed(f"Session delete rejected: {describe_error(e)}", cause=e) from e

        deleted = result.deleted_count > 0
        logger.info("mongo_session_store.deleted", {
            "collection": self.collection_name,
            "session_name": session_name,
            "deleted": deleted,
        })
        return deleted

    async def reset(self) -> None:
        db = self.connection.database
        try:
            await db.drop_collection(self.collection_name)
        except CONNECTIVITY_ERRORS as e:
            raise StoreUnavailable("Document store is not reachable", cause=e) from e
        except OperationFailure as e:
            if e.code not in NAMESPACE_NOT_FOUND_CODES:
                raise StoreWriteFailed(f"Dropping {self.collection_name} failed", cause=e) from e

        await self.connection.ensure_collection(self.collection_name)
        logger.info("mongo_session_store.reset", {"collection": self.collection_name})

    async def drop_collection(self, name: str) -> bool:
        """Drop an auxiliary collection. Returns False if it did not exist."""
        db = self.connection.database
        try:
            existing = await db.list_collection_names()
            if name not in existing:
                return False
            await db.drop_collection(name)
        except CONNECTIVITY_ERRORS as e:
            raise StoreUnavailable("Document store is not reachable", cause=e) from e
        except OperationFailure as e:
            if e.code in NAMESPACE_NOT_FOUND_CODES:
                return False
            raise StoreWriteFailed(f"Dropping {name} failed", cause=e) from e
        logger.info("mongo_session_store.collection_dropped", {"collection": name})
        return True
