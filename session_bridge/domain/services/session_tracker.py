"""
Session State Tracker
=====================
Bounded, append-only event ledger describing the persisted session, plus the
store decorator that feeds it.

Events are split into two logs by name: anything containing "connect"
(which also covers "disconnect") goes to the connection log, everything else
to the auth log. Both logs keep the latest 100 entries.
"""

import threading
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, Optional

from session_bridge.core.logger import get_logger
from session_bridge.core.utils import describe_error, extract_session_id, redact_session_id
from session_bridge.domain.interfaces.storage import SessionStore
from session_bridge.domain.models.session_lifecycle import SessionEvent, utc_now

logger = get_logger("session_tracker")

MAX_EVENTS = 100
RECENT_EVENTS = 5


class SessionStateTracker:
    """
    Single source of session truth for status, health checks and shutdown.

    Writers go through record_event() / the tracked store; readers get
    snapshot copies taken under the same lock, so a partially appended log
    is never visible.
    """

    def __init__(self, max_events: int = MAX_EVENTS):
        self._lock = threading.RLock()
        self._auth_events: Deque[SessionEvent] = deque(maxlen=max_events)
        self._connection_events: Deque[SessionEvent] = deque(maxlen=max_events)
        self._last_save_timestamp: Optional[datetime] = None
        self._session_id: Optional[str] = None

    @staticmethod
    def is_connection_event(name: str) -> bool:
        return "connect" in name

    def record_event(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> SessionEvent:
        event = SessionEvent(name=name, timestamp=utc_now(), attributes=dict(attributes or {}))
        with self._lock:
            if self.is_connection_event(name):
                self._connection_events.append(event)
            else:
                self._auth_events.append(event)
        return event

    def mark_saved(self, session_id: Optional[str] = None) -> None:
        """Record a successful persist of the session record."""
        with self._lock:
            self._last_save_timestamp = utc_now()
            if session_id:
                self._session_id = session_id

    @property
    def last_save_timestamp(self) -> Optional[datetime]:
        with self._lock:
            return self._last_save_timestamp

    @property
    def auth_events(self):
        with self._lock:
            return list(self._auth_events)

    @property
    def connection_events(self):
        with self._lock:
            return list(self._connection_events)

    def get_summary(self, include_recent: bool = False) -> Dict[str, Any]:
        """
        Snapshot of the session state.

        Args:
            include_recent: Include the last 5 entries of each log

        Returns:
            Dict with last_save_timestamp, session_id (redacted) and event counts
        """
        with self._lock:
            summary: Dict[str, Any] = {
                "last_save_timestamp": (
                    self._last_save_timestamp.isoformat() if self._last_save_timestamp else None
                ),
                "session_id": redact_session_id(self._session_id),
                "auth_event_count": len(self._auth_events),
                "connection_event_count": len(self._connection_events),
            }
            if include_recent:
                summary["recent_auth_events"] = [
                    e.to_dict() for e in list(self._auth_events)[-RECENT_EVENTS:]
                ]
                summary["recent_connection_events"] = [
                    e.to_dict() for e in list(self._connection_events)[-RECENT_EVENTS:]
                ]
            return summary

    def wrap(self, store: SessionStore) -> 'TrackedSessionStore':
        """Decorate a store so its save/extract calls feed this tracker."""
        return TrackedSessionStore(store, self)


class TrackedSessionStore(SessionStore):
    """
    SessionStore decorator recording every save/extract in the tracker.

    The original result or fault is always propagated unchanged.
    """

    def __init__(self, inner: SessionStore, tracker: SessionStateTracker):
        self._inner = inner
        self._tracker = tracker

    @property
    def inner(self) -> SessionStore:
        return self._inner

    async def save(self, session_name: str, blob: Any) -> None:
        session_id = extract_session_id(blob)
        logger.debug("session_store.saving", {
            "session_name": session_name,
            "session_id": redact_session_id(session_id),
        })
        try:
            await self._inner.save(session_name, blob)
        except Exception as e:
            logger.error("session_store.save_failed", {
                "session_name": session_name,
                "error": describe_error(e),
                "error_type": type(e).__name__,
            })
            self._tracker.record_event("session_save_failed", {"error": describe_error(e)})
            raise

        self._tracker.mark_saved(session_id)
        self._tracker.record_event("session_saved", {"success": True})
        logger.info("session_store.saved", {"session_name": session_name})

    async def extract(self, session_name: str) -> Optional[Any]:
        try:
            blob = await self._inner.extract(session_name)
        except Exception as e:
            logger.error("session_store.extract_failed", {
                "session_name": session_name,
                "error": describe_error(e),
            })
            self._tracker.record_event("session_extract_failed", {"error": describe_error(e)})
            raise

        if blob is None:
            logger.warning("session_store.no_session_found", {"session_name": session_name})
            self._tracker.record_event("no_session_found")
            return None

        logger.info("session_store.extracted", {
            "session_name": session_name,
            "session_id": redact_session_id(extract_session_id(blob)),
        })
        self._tracker.record_event("session_extracted", {"success": True})
        return blob

    async def delete(self, session_name: str) -> bool:
        deleted = await self._inner.delete(session_name)
        self._tracker.record_event("session_deleted", {"deleted": deleted})
        return deleted

    async def reset(self) -> None:
        await self._inner.reset()
        self._tracker.record_event("session_store_reset")
