"""
Session Cleanup Service
=======================
Administrative reset of the persisted session: the next initialize() starts
from scratch and asks for a new QR pairing.

Order:
1. Destroy the controller handle so nothing re-saves the record
2. Delete the session record
3. Drop the transport's archive collections
4. Recreate the session collection empty
5. Remove session/archive files from the local session directory
6. Initialize the client again; with no record left it asks for a QR

Step 6 runs even when the store steps failed, so the controller never stays
DESTROYED. If that initialize fails, the health monitor retries it.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from session_bridge.core.exceptions import SessionBridgeError
from session_bridge.core.logger import get_logger
from session_bridge.core.utils import describe_error
from session_bridge.domain.interfaces.storage import SessionStore, StoreConnection
from session_bridge.domain.services.client_controller import ClientLifecycleController
from session_bridge.infrastructure.config.settings import ClientSettings, StoreSettings
from session_bridge.infrastructure.store.mongo_session_store import MongoSessionStore

logger = get_logger("session_cleanup")

SESSION_FILE_MARKERS = (".zip", "session")


@dataclass
class CleanupResult:
    ok: bool
    record_deleted: bool = False
    files_removed: List[str] = field(default_factory=list)
    collections_dropped: List[str] = field(default_factory=list)
    error: Optional[str] = None
    client_state: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "success" if self.ok else "failed",
            "message": "Sessions cleaned up successfully" if self.ok else "Failed to clean up sessions",
            "record_deleted": self.record_deleted,
            "files_removed": self.files_removed,
            "collections_dropped": self.collections_dropped,
            "error": self.error,
            "client_state": self.client_state,
        }


class SessionCleanupService:

    def __init__(
        self,
        controller: ClientLifecycleController,
        store: SessionStore,
        archive_store: MongoSessionStore,
        connection: StoreConnection,
        store_settings: StoreSettings,
        client_settings: ClientSettings,
    ):
        self.controller = controller
        self.store = store
        self.archive_store = archive_store
        self.connection = connection
        self.store_settings = store_settings
        self.client_settings = client_settings

    async def cleanup(self) -> CleanupResult:
        logger.info("session_cleanup.started", {"session_name": self.store_settings.session_name})
        result = CleanupResult(ok=False)

        destroy_result = await self.controller.destroy()
        if destroy_result.details.get("abandoned"):
            logger.warning("session_cleanup.handle_abandoned", {})

        if await self._reset_store(result):
            result.files_removed = self._clean_session_directory(Path(self.client_settings.data_path))
            result.ok = True
            logger.info("session_cleanup.completed", {
                "record_deleted": result.record_deleted,
                "collections_dropped": result.collections_dropped,
                "files_removed": len(result.files_removed),
            })

        await self._restart_client(result)
        return result

    async def _reset_store(self, result: CleanupResult) -> bool:
        if not await self.connection.ping():
            result.error = "Session store is not reachable"
            logger.error("session_cleanup.store_unreachable", {})
            return False

        try:
            result.record_deleted = await self.store.delete(self.store_settings.session_name)
            for name in self.store_settings.archive_collections:
                if await self.archive_store.drop_collection(name):
                    result.collections_dropped.append(name)
            await self.store.reset()
        except SessionBridgeError as e:
            result.error = e.message
            logger.error("session_cleanup.database_failed", {
                "error": e.message,
                "error_code": e.code,
            })
            return False
        return True

    async def _restart_client(self, result: CleanupResult) -> None:
        init_result = await self.controller.initialize()
        result.client_state = init_result.state
        if init_result.ok:
            logger.info("session_cleanup.client_reinitialized", {"state": init_result.state})
        else:
            logger.warning("session_cleanup.client_reinitialize_failed", {
                "state": init_result.state,
                "error_code": init_result.error_code,
            })

    def _is_session_file(self, name: str) -> bool:
        markers = (self.client_settings.archive_marker,) + SESSION_FILE_MARKERS
        return any(marker in name for marker in markers)

    def _clean_session_directory(self, session_dir: Path) -> List[str]:
        """Delete session files; a missing directory is created. Errors are logged only."""
        removed: List[str] = []
        try:
            if not session_dir.exists():
                session_dir.mkdir(parents=True, exist_ok=True)
                logger.info("session_cleanup.directory_created", {"path": str(session_dir)})
                return removed

            for entry in session_dir.iterdir():
                if entry.is_file() and self._is_session_file(entry.name):
                    entry.unlink()
                    removed.append(entry.name)
        except OSError as e:
            logger.error("session_cleanup.filesystem_failed", {
                "path": str(session_dir),
                "error": describe_error(e),
            })
        return removed
