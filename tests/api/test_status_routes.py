"""
API Tests: Status & Administration Endpoints
============================================
Tests: /health, /status, /force-save and /api/cleanup-sessions against a
Container wired with in-memory fakes (no lifespan, no real store).
"""

import httpx
import pytest
import pytest_asyncio

from session_bridge.api.server import create_app
from session_bridge.core.logger import get_logger
from session_bridge.infrastructure.config.settings import ClientSettings
from session_bridge.infrastructure.container import Container

from tests.conftest import ADMIN_KEY, SESSION_BLOB, SESSION_NAME

AUTH = {"Authorization": f"Bearer {ADMIN_KEY}"}


@pytest.fixture
def container(app_settings, fake_connection, memory_store, transport_factory, tmp_path):
    app_settings.client = ClientSettings(data_path=str(tmp_path / "whatsapp-session"))
    return Container(
        settings=app_settings,
        logger=get_logger("tests.container"),
        transport_factory=transport_factory,
        connection=fake_connection,
        base_store=memory_store,
        exit_func=lambda code: None,
    )


@pytest_asyncio.fixture
async def client(container):
    app = create_app(container, manage_lifecycle=False)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


# ============================================================================
# /health
# ============================================================================

class TestHealthEndpoint:

    @pytest.mark.asyncio
    async def test_unhealthy_without_client(self, client):
        response = await client.get("/health")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "unhealthy"
        assert body["store"] is True
        assert body["client"] is False

    @pytest.mark.asyncio
    async def test_healthy_with_client(self, client, container):
        await container.controller.initialize()

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_health_is_public(self, client):
        response = await client.get("/health")
        assert response.status_code != 401


# ============================================================================
# Admin authentication
# ============================================================================

class TestAdminAuth:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,path", [
        ("GET", "/status"),
        ("POST", "/force-save"),
        ("POST", "/api/cleanup-sessions"),
    ])
    async def test_missing_token_rejected(self, client, method, path):
        response = await client.request(method, path)

        assert response.status_code == 401
        assert response.json() == {"status": "error", "message": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_wrong_token_rejected(self, client):
        response = await client.get("/status", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_scheme_rejected(self, client):
        response = await client.get("/status", headers={"Authorization": f"Basic {ADMIN_KEY}"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_no_configured_key_rejects_everything(self, client, container):
        container.settings.api.admin_api_key = ""
        response = await client.get("/status", headers={"Authorization": "Bearer "})
        assert response.status_code == 401


# ============================================================================
# /status
# ============================================================================

class TestStatusEndpoint:

    @pytest.mark.asyncio
    async def test_status_sections(self, client, container, transport_factory):
        await container.controller.initialize()
        container.conversations.set_state("48123456789@c.us", "menu", issue_type="printer")

        response = await client.get("/status", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {
            "server_info", "database", "session_state", "client", "qr_state", "user_state",
            "ticketing", "health", "configuration", "deployment_info",
        }
        assert body["database"] == {"status": "connected", "collection": "whatsapp-sessions"}
        assert body["client"]["state"] == "awaiting_auth"
        assert body["qr_state"]["has_qr"] is True
        assert body["qr_state"]["is_expired"] is False
        assert body["user_state"]["users"][0]["id"] == "48123456789"
        assert body["ticketing"]["status"]["configured"] is True
        assert body["configuration"]["missing"] == []
        assert "memory_usage" in body["server_info"]

    @pytest.mark.asyncio
    async def test_status_never_leaks_secrets(self, client, container, transport_factory):
        await container.controller.initialize()
        transport_factory.latest.simulate_login()
        await container.controller.flush()

        response = await client.get("/status", headers=AUTH)

        text = response.text
        assert "s3cret" not in text
        assert ADMIN_KEY not in text
        assert "secret-token" not in text
        assert "data:image" not in text
        assert "tickets.json" not in text
        assert response.json()["session_state"]["session_id"] == "ABCDEFGH..."


# ============================================================================
# /force-save
# ============================================================================

class TestForceSave:

    @pytest.mark.asyncio
    async def test_without_client(self, client):
        response = await client.post("/force-save", headers=AUTH)

        body = response.json()
        assert body["status"] == "failed"
        assert body["error_code"] == "ClientHandleMissing"
        assert body["message"].startswith("Failed to save session")

    @pytest.mark.asyncio
    async def test_authenticated_client_is_saved(self, client, container, transport_factory, memory_store):
        await container.controller.initialize()
        transport_factory.latest.simulate_login()

        response = await client.post("/force-save", headers=AUTH)

        body = response.json()
        assert body["status"] == "success"
        assert body["message"] == "Session saved successfully"
        assert memory_store.documents[SESSION_NAME] == SESSION_BLOB


# ============================================================================
# /api/cleanup-sessions
# ============================================================================

class TestCleanupSessions:

    @pytest.mark.asyncio
    async def test_cleanup_success(self, client, container, memory_store, transport_factory):
        memory_store.documents[SESSION_NAME] = SESSION_BLOB
        await container.controller.initialize()
        old_handle = container.controller.handle

        response = await client.post("/api/cleanup-sessions", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["record_deleted"] is True
        assert body["client_state"] == "awaiting_auth"
        assert memory_store.documents == {}
        assert old_handle.destroyed
        assert container.controller.handle is transport_factory.latest

    @pytest.mark.asyncio
    async def test_cleanup_store_down(self, client, fake_connection):
        fake_connection.reachable = False

        response = await client.post("/api/cleanup-sessions", headers=AUTH)

        assert response.status_code == 500
        assert response.json()["error"] == "Session store is not reachable"
