"""
Storage Interfaces - Ports for session persistence
==================================================
Abstract interfaces for the document store holding the session record.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class StoreConnection(ABC):
    """
    Interface for the underlying document-store connection.
    Used by the health monitor (ping / reconnect) and on shutdown (close).
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection; raises StoreUnavailable if the store is unreachable"""
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Check reachability. Never raises."""
        raise NotImplementedError

    @abstractmethod
    async def reconnect(self) -> bool:
        """Close and re-open the connection. Never raises."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Close the connection (idempotent)"""
        raise NotImplementedError

    @abstractmethod
    async def ensure_collection(self, name: str) -> None:
        """Create the collection if it does not exist yet"""
        raise NotImplementedError

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Result of the last connect/ping"""
        raise NotImplementedError


class SessionStore(ABC):
    """
    Interface for the session record store.

    One record per session name; writes are upserts. Only connectivity faults
    raise StoreUnavailable. A missing collection or record is not an error.
    """

    @abstractmethod
    async def save(self, session_name: str, blob: Any) -> None:
        """
        Upsert the session blob.

        Raises:
            StoreUnavailable: store cannot be reached
            StoreWriteFailed: store rejected the write
        """
        raise NotImplementedError

    @abstractmethod
    async def extract(self, session_name: str) -> Optional[Any]:
        """Return the stored blob, or None when there is no record"""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, session_name: str) -> bool:
        """Delete the record. Returns True if a record was removed."""
        raise NotImplementedError

    @abstractmethod
    async def reset(self) -> None:
        """Drop the backing collection and recreate it empty"""
        raise NotImplementedError
