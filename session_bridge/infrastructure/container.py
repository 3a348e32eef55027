"""
Dependency Injection Container - Composition Root
=================================================
Builds the single instance of every session-bridge component from
AppSettings and owns their startup order.
"""

import importlib
import platform
import sys
from datetime import datetime, UTC
from typing import Any, Callable, Dict, Optional

from session_bridge.application.services.conversations import ConversationRegistry
from session_bridge.application.services.session_cleanup import SessionCleanupService
from session_bridge.core.exceptions import ClientInitFailed, SessionBridgeError
from session_bridge.core.health_monitor import SessionHealthMonitor
from session_bridge.core.logger import StructuredLogger
from session_bridge.core.shutdown import ShutdownCoordinator
from session_bridge.domain.interfaces.transport import TransportFactory
from session_bridge.domain.services.client_controller import ClientLifecycleController
from session_bridge.domain.services.session_tracker import SessionStateTracker
from session_bridge.infrastructure.config.settings import AppSettings, find_missing_settings
from session_bridge.infrastructure.qr.qr_encoder import encode_qr_data_url
from session_bridge.infrastructure.store.mongo_connection import MongoConnection
from session_bridge.infrastructure.store.mongo_session_store import MongoSessionStore
from session_bridge.infrastructure.ticketing.status_probe import TicketingStatusProbe


def load_transport_factory(import_path: str) -> TransportFactory:
    """
    Resolve a 'package.module:callable' transport factory.

    An empty path yields a factory that fails at initialize(), so the HTTP
    surface still comes up and reports the problem.
    """
    if not import_path:
        def _unconfigured(store, settings, session_name):
            raise ClientInitFailed("No transport factory configured (CLIENT_TRANSPORT_FACTORY)")
        return _unconfigured

    module_name, _, attr = import_path.partition(":")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


class Container:
    """
    Pure Dependency Injection Container

    This container:
    - Is created ONCE in main.py (or by tests) with all dependencies
    - Only assembles objects from Settings (no business logic)
    - Uses constructor injection exclusively
    - Lets tests swap the store connection, transport factory and exit hook
    """

    def __init__(
        self,
        settings: AppSettings,
        logger: StructuredLogger,
        transport_factory: Optional[TransportFactory] = None,
        connection: Optional[Any] = None,
        base_store: Optional[Any] = None,
        exit_func: Optional[Callable[[int], None]] = None,
    ):
        self.settings = settings
        self.logger = logger
        self.started_at: Optional[datetime] = None

        self.connection = connection or MongoConnection(settings.store)
        self.base_store = base_store or MongoSessionStore(self.connection, settings.store.collection)
        self.tracker = SessionStateTracker()
        self.store = self.tracker.wrap(self.base_store)

        self.controller = ClientLifecycleController(
            store=self.store,
            connection=self.connection,
            tracker=self.tracker,
            transport_factory=transport_factory or load_transport_factory(settings.client.transport_factory),
            client_settings=settings.client,
            collection_name=settings.store.collection,
            session_name=settings.store.session_name,
            qr_encoder=encode_qr_data_url,
        )
        self.monitor = SessionHealthMonitor(
            controller=self.controller,
            connection=self.connection,
            tracker=self.tracker,
            settings=settings.health,
        )
        self.shutdown_coordinator = ShutdownCoordinator(
            monitor=self.monitor,
            controller=self.controller,
            connection=self.connection,
            tracker=self.tracker,
            final_flush_wait_seconds=settings.health.final_flush_wait_seconds,
            archive_marker=settings.client.archive_marker,
            exit_func=exit_func or sys.exit,
        )
        self.cleanup_service = SessionCleanupService(
            controller=self.controller,
            store=self.store,
            archive_store=self.base_store,
            connection=self.connection,
            store_settings=settings.store,
            client_settings=settings.client,
        )
        self.conversations = ConversationRegistry()
        self.ticketing = TicketingStatusProbe(settings.ticketing)

        self.logger.info("container.init_completed", {
            "session_name": settings.store.session_name,
            "collection": settings.store.collection,
            "missing_settings": find_missing_settings(settings),
        })

    async def start(self) -> None:
        """
        Connect the store, initialize the client and start health checks.

        A store or client failure is logged and the process keeps serving;
        the health monitor retries.
        """
        self.started_at = datetime.now(UTC)

        try:
            await self.connection.connect()
        except SessionBridgeError as e:
            self.logger.error("container.store_connect_failed", {
                "error": e.message,
                "error_code": e.code,
            })

        result = await self.controller.initialize()
        if result.ok:
            self.logger.info("container.client_initialized", {"state": result.state})
        else:
            self.logger.error("container.client_initialize_failed", {
                "error_code": result.error_code,
                "message": result.error.message if result.error else None,
            })

        self.monitor.start()

    async def shutdown(self, exit_code: int = 0, reason: str = "lifespan") -> int:
        return await self.shutdown_coordinator.shutdown(exit_code, reason)

    def uptime_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        return (datetime.now(UTC) - self.started_at).total_seconds()

    def server_info(self) -> Dict[str, Any]:
        now = datetime.now(UTC)
        return {
            "uptime_seconds": round(self.uptime_seconds(), 1),
            "start_time": self.started_at.isoformat() if self.started_at else None,
            "current_time": now.isoformat(),
            "python_version": platform.python_version(),
        }
