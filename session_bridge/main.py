"""
Process entrypoint: `python -m session_bridge.main` or the `session-bridge`
console script.
"""

import sys

import uvicorn

from session_bridge.api.server import create_app
from session_bridge.core.logger import StructuredLogger, configure_logging
from session_bridge.core.shutdown import ShutdownCoordinator
from session_bridge.infrastructure.config.config_loader import get_settings_from_working_directory
from session_bridge.infrastructure.config.settings import find_missing_settings
from session_bridge.infrastructure.container import Container


class SessionBridgeServer(uvicorn.Server):
    """
    uvicorn server whose termination signals go through the Shutdown
    Coordinator, so the final session flush runs before the server stops.
    A second signal falls back to uvicorn's own (forced) exit.
    """

    def __init__(self, config: uvicorn.Config, coordinator: ShutdownCoordinator):
        super().__init__(config)
        self.coordinator = coordinator

    def handle_exit(self, sig, frame) -> None:
        if not self.coordinator.in_progress:
            if self.coordinator.request_shutdown_threadsafe(0, f"signal {sig}"):
                return
        super().handle_exit(sig, frame)


def main() -> int:
    settings = get_settings_from_working_directory()
    configure_logging(settings.logging)
    logger = StructuredLogger("SessionBridge", settings.logging)

    missing = find_missing_settings(settings)
    if missing:
        logger.warning("main.missing_settings", {"missing": missing})

    exit_state = {"code": 0}
    server: SessionBridgeServer

    def exit_func(code: int) -> None:
        exit_state["code"] = code
        server.should_exit = True

    container = Container(settings, logger, exit_func=exit_func)
    app = create_app(container)

    config = uvicorn.Config(app, host=settings.api.host, port=settings.api.port, log_config=None)
    server = SessionBridgeServer(config, container.shutdown_coordinator)

    logger.info("main.starting", {"host": settings.api.host, "port": settings.api.port})
    server.run()
    return exit_state["code"]


if __name__ == "__main__":
    sys.exit(main())
