"""
HTTP application factory.

The lifespan starts the runtime (store connect, client initialize, health
monitor) and hands shutdown to the Shutdown Coordinator.
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from session_bridge.api.status_routes import AdminAuthError, initialize_status_dependencies, router as status_router
from session_bridge.core.logger import get_logger
from session_bridge.core.utils import describe_error

logger = get_logger(__name__)


def create_app(runtime: Any, manage_lifecycle: bool = True) -> FastAPI:
    """
    Create the FastAPI application around a Container.

    Args:
        runtime: Container instance
        manage_lifecycle: Start/stop the runtime in the lifespan (tests that
            drive the runtime themselves pass False)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("server.startup", {"manage_lifecycle": manage_lifecycle})
        if manage_lifecycle:
            runtime.shutdown_coordinator.install()
            await runtime.start()
        yield
        if manage_lifecycle:
            logger.info("server.shutdown", {})
            await runtime.shutdown(exit_code=0, reason="lifespan")

    app = FastAPI(title=runtime.settings.app_name, version=runtime.settings.version, lifespan=lifespan)
    app.state.runtime = runtime

    async def admin_auth_handler(request: Request, exc: AdminAuthError):
        return JSONResponse(status_code=401, content={"status": "error", "message": "Unauthorized"})

    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error("api.unhandled_error", {
            "endpoint": str(request.url.path),
            "method": request.method,
            "error": describe_error(exc),
        }, exc_info=True)
        return JSONResponse(status_code=500, content={"status": "error", "message": "Error processing request"})

    app.add_exception_handler(AdminAuthError, admin_auth_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    initialize_status_dependencies(runtime)
    app.include_router(status_router)

    return app
