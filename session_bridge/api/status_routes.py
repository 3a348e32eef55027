"""
Status & Administration API Routes
==================================

Endpoints:
- GET  /health                - public liveness probe (store + client handle)
- GET  /status                - detailed status (admin)
- POST /force-save            - immediate session flush (admin)
- POST /api/cleanup-sessions  - delete the session record and local files, restart the client (admin)

Admin endpoints require `Authorization: Bearer <API_ADMIN_API_KEY>`. With no
key configured every admin call is rejected.
"""

import secrets
from datetime import datetime, UTC
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from session_bridge.core.health_monitor import sample_memory_usage
from session_bridge.core.logger import get_logger
from session_bridge.core.utils import describe_error
from session_bridge.infrastructure.config.settings import find_missing_settings

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

# Dependency injection - will be set during app startup
_runtime: Optional[Any] = None


class AdminAuthError(Exception):
    """Missing or wrong admin bearer token. Rendered as 401 by the app."""
    pass


def initialize_status_dependencies(runtime: Any):
    """
    Initialize dependencies for status routes.
    Called from server.py during app creation.

    Args:
        runtime: Container holding controller, tracker, store connection, ...
    """
    global _runtime
    _runtime = runtime
    logger.info("status_routes.dependencies_initialized")


def get_runtime() -> Any:
    """Verify dependencies are initialized."""
    if _runtime is None:
        raise RuntimeError(
            "Status routes dependencies not initialized. "
            "Call initialize_status_dependencies() during app startup."
        )
    return _runtime


def require_admin(request: Request, runtime: Any = Depends(get_runtime)) -> None:
    admin_key = runtime.settings.api.admin_api_key
    auth_header = request.headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")

    if not admin_key or scheme.lower() != "bearer" or not token:
        _reject(request)
    if not secrets.compare_digest(token.strip().encode(), admin_key.encode()):
        _reject(request)


def _reject(request: Request):
    logger.warning("api.unauthorized", {
        "endpoint": str(request.url.path),
        "method": request.method,
        "client_ip": request.client.host if request.client else "unknown",
    })
    raise AdminAuthError()


def _now() -> str:
    return datetime.now(UTC).isoformat()


@router.get("/health")
async def health(runtime: Any = Depends(get_runtime)) -> JSONResponse:
    """200 when the store is connected and a client handle exists, else 503."""
    store_ok = bool(runtime.connection.is_connected)
    client_ok = runtime.controller.handle is not None
    healthy = store_ok and client_ok
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "ok" if healthy else "unhealthy",
            "store": store_ok,
            "client": client_ok,
            "time": _now(),
        },
    )


@router.get("/status", dependencies=[Depends(require_admin)])
async def status(runtime: Any = Depends(get_runtime)) -> JSONResponse:
    try:
        server_info = runtime.server_info()
        try:
            server_info["memory_usage"] = sample_memory_usage()
        except Exception as e:
            logger.warning("status_routes.memory_sample_failed", {"error": describe_error(e)})

        last_report = runtime.monitor.last_report
        settings = runtime.settings
        body: Dict[str, Any] = {
            "server_info": server_info,
            "database": {
                "status": "connected" if runtime.connection.is_connected else "disconnected",
                "collection": settings.store.collection,
            },
            "session_state": runtime.tracker.get_summary(include_recent=True),
            "client": runtime.controller.client_flags(),
            "qr_state": runtime.controller.qr_state(),
            "user_state": runtime.conversations.get_user_states(),
            "ticketing": {"status": runtime.ticketing.check_api_status()},
            "health": last_report.to_dict() if last_report else None,
            "configuration": {"missing": find_missing_settings(settings)},
            "deployment_info": {
                "environment": settings.deployment.environment,
                "deployment_id": settings.deployment.deployment_id,
                "build_id": settings.deployment.build_id,
            },
        }
        return JSONResponse(content=body)
    except Exception as e:
        logger.error("status_routes.status_failed", {"error": describe_error(e)}, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Error generating status information", "time": _now()},
        )


@router.post("/force-save", dependencies=[Depends(require_admin)])
async def force_save(runtime: Any = Depends(get_runtime)) -> JSONResponse:
    result = await runtime.controller.flush()
    logger.info("status_routes.force_save", {"ok": result.ok, "error_code": result.error_code})
    body = result.to_dict()
    body["message"] = "Session saved successfully" if result.ok else f"Failed to save session: {body['message']}"
    body["time"] = _now()
    return JSONResponse(content=body)


@router.post("/api/cleanup-sessions", dependencies=[Depends(require_admin)])
async def cleanup_sessions(runtime: Any = Depends(get_runtime)) -> JSONResponse:
    try:
        result = await runtime.cleanup_service.cleanup()
    except Exception as e:
        logger.error("status_routes.cleanup_failed", {"error": describe_error(e)}, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Error processing cleanup request", "time": _now()},
        )

    body = result.to_dict()
    body["time"] = _now()
    return JSONResponse(status_code=200 if result.ok else 500, content=body)
