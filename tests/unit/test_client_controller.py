"""
Unit Tests: Client Lifecycle Controller
=======================================
Tests: initialize/recover/restart/destroy/flush semantics, transport event
handling (QR, stale, unapplied events) and a replay of random event
sequences against the transition table.
"""

import asyncio
import random
import threading
from collections import Counter

import pytest

from session_bridge.core.exceptions import (
    ClientHandleMissing,
    ClientInitFailed,
    PrereqNotMet,
    ReinitFailed,
    SaveFailed,
)
from session_bridge.domain.models.session_lifecycle import ClientEvent, ClientState, next_state
from session_bridge.domain.services.client_controller import ClientLifecycleController

from tests.conftest import SESSION_BLOB, SESSION_NAME, FakeTransport


def _states(controller):
    return [(t.from_state, t.to_state) for t in controller.transitions]


# ============================================================================
# initialize()
# ============================================================================

class TestInitialize:

    @pytest.mark.asyncio
    async def test_fresh_install_awaits_qr(self, controller, transport_factory):
        result = await controller.initialize()

        assert result.ok
        assert controller.state == ClientState.AWAITING_AUTH
        assert controller.handle is transport_factory.latest
        assert controller.qr is not None
        assert controller.qr.encoded_image == "2@pairing-payload"

    @pytest.mark.asyncio
    async def test_stored_session_restores_without_qr(self, controller, memory_store):
        memory_store.documents[SESSION_NAME] = SESSION_BLOB

        result = await controller.initialize()

        assert result.ok
        assert controller.state == ClientState.READY
        assert controller.qr is None
        assert _states(controller) == [
            (ClientState.UNINITIALIZED, ClientState.INITIALIZING),
            (ClientState.INITIALIZING, ClientState.AUTHENTICATED),
            (ClientState.AUTHENTICATED, ClientState.READY),
        ]

    @pytest.mark.asyncio
    async def test_store_unreachable_is_prereq_failure(self, controller, fake_connection, transport_factory):
        fake_connection.reachable = False

        result = await controller.initialize()

        assert not result.ok
        assert isinstance(result.error, PrereqNotMet)
        assert controller.state == ClientState.UNINITIALIZED
        assert transport_factory.transports == []

    @pytest.mark.asyncio
    async def test_collection_is_created(self, controller, memory_store):
        await controller.initialize()
        assert "whatsapp-sessions" in memory_store.collections

    @pytest.mark.asyncio
    async def test_initialize_while_ready_is_noop(self, controller, transport_factory, memory_store):
        memory_store.documents[SESSION_NAME] = SESSION_BLOB
        await controller.initialize()
        handle = controller.handle

        result = await controller.initialize()

        assert result.ok
        assert result.details == {"reused": True}
        assert controller.handle is handle
        assert len(transport_factory.transports) == 1

    @pytest.mark.asyncio
    async def test_concurrent_initialize_creates_one_handle(self, controller, transport_factory):
        results = await asyncio.gather(controller.initialize(), controller.initialize())

        assert all(r.ok for r in results)
        assert len(transport_factory.transports) == 1

    @pytest.mark.asyncio
    async def test_transport_initialize_failure_degrades(self, controller, transport_factory):
        transport_factory.configure = lambda t: setattr(t, "fail_initialize", RuntimeError("browser crashed"))

        result = await controller.initialize()

        assert not result.ok
        assert isinstance(result.error, ClientInitFailed)
        assert "browser crashed" in result.error.message
        assert controller.state == ClientState.DEGRADED

    @pytest.mark.asyncio
    async def test_factory_failure_stays_uninitialized(self, controller, transport_factory):
        transport_factory.fail_create = RuntimeError("no chromium")

        result = await controller.initialize()

        assert isinstance(result.error, ClientInitFailed)
        assert controller.state == ClientState.UNINITIALIZED
        assert controller.handle is None

    @pytest.mark.asyncio
    async def test_degraded_requires_recover(self, controller, transport_factory):
        transport_factory.configure = lambda t: setattr(t, "fail_initialize", RuntimeError("x"))
        await controller.initialize()

        result = await controller.initialize()

        assert isinstance(result.error, PrereqNotMet)
        assert controller.state == ClientState.DEGRADED


# ============================================================================
# Transport events
# ============================================================================

class TestTransportEvents:

    @pytest.mark.asyncio
    async def test_login_clears_qr_and_reaches_ready(self, controller, transport_factory):
        await controller.initialize()

        transport_factory.latest.simulate_login()

        assert controller.state == ClientState.READY
        assert controller.qr is None

    @pytest.mark.asyncio
    async def test_authenticated_does_not_set_save_timestamp(self, controller, transport_factory, tracker):
        await controller.initialize()

        transport_factory.latest.simulate_login()

        assert tracker.last_save_timestamp is None
        authenticated = [e for e in tracker.auth_events if e.name == "authenticated"][-1]
        assert authenticated.attributes["session_id"] == "ABCDEFGH..."
        assert "secret-token" not in str(authenticated.attributes)

    @pytest.mark.asyncio
    async def test_disconnected_clears_qr(self, controller, transport_factory):
        await controller.initialize()
        assert controller.qr is not None

        transport_factory.latest.emit("disconnected", "NAVIGATION")

        assert controller.qr is None
        assert controller.state == ClientState.DEGRADED

    @pytest.mark.asyncio
    async def test_disconnected_from_ready_degrades_without_destroy(self, controller, transport_factory):
        await controller.initialize()
        transport = transport_factory.latest
        transport.simulate_login()

        transport.emit("disconnected", "LOGOUT")

        assert controller.state == ClientState.DEGRADED
        assert controller.handle is transport
        assert not transport.destroyed

    @pytest.mark.asyncio
    async def test_event_without_transition_is_recorded(self, controller, transport_factory, tracker):
        await controller.initialize()

        transport_factory.latest.emit("ready")

        assert controller.state == ClientState.AWAITING_AUTH
        recorded = tracker.auth_events[-1]
        assert recorded.name == "client_ready"
        assert recorded.attributes["applied"] is False

    @pytest.mark.asyncio
    async def test_informational_events_recorded_only(self, controller, transport_factory, tracker):
        await controller.initialize()
        transport = transport_factory.latest

        transport.emit("remote_session_saved")
        transport.emit("loading_screen", 50, "Loading")
        transport.emit("connect_failure", "timeout")

        assert controller.state == ClientState.AWAITING_AUTH
        assert tracker.auth_events[-2].name == "remote_session_saved"
        assert tracker.auth_events[-1].attributes == {"percent": 50, "message": "Loading"}
        assert tracker.connection_events[-1].name == "connect_failure"

    @pytest.mark.asyncio
    async def test_auth_failure_requires_restart(self, controller, transport_factory):
        await controller.initialize()
        transport_factory.latest.emit("auth_failure", "bad credentials")
        assert controller.state == ClientState.AUTH_FAILED

        result = await controller.initialize()
        assert isinstance(result.error, PrereqNotMet)
        assert len(transport_factory.transports) == 1

        result = await controller.restart()
        assert result.ok
        assert controller.state == ClientState.AWAITING_AUTH
        assert len(transport_factory.transports) == 2
        assert transport_factory.transports[0].destroyed

    @pytest.mark.asyncio
    async def test_qr_encoder_failure_leaves_no_artifact(
        self, memory_store, fake_connection, tracker, transport_factory, app_settings
    ):
        def broken_encoder(payload):
            raise ValueError("cannot render")

        controller = ClientLifecycleController(
            store=tracker.wrap(memory_store),
            connection=fake_connection,
            tracker=tracker,
            transport_factory=transport_factory,
            client_settings=app_settings.client,
            collection_name=app_settings.store.collection,
            session_name=app_settings.store.session_name,
            qr_encoder=broken_encoder,
        )

        await controller.initialize()

        assert controller.state == ClientState.AWAITING_AUTH
        assert controller.qr is None
        assert controller.qr_state()["has_qr"] is False

    @pytest.mark.asyncio
    async def test_qr_encoder_output_is_stored(
        self, memory_store, fake_connection, tracker, transport_factory, app_settings
    ):
        controller = ClientLifecycleController(
            store=tracker.wrap(memory_store),
            connection=fake_connection,
            tracker=tracker,
            transport_factory=transport_factory,
            client_settings=app_settings.client,
            collection_name=app_settings.store.collection,
            session_name=app_settings.store.session_name,
            qr_encoder=lambda payload: f"data:image/png;base64,{payload[::-1]}",
        )

        await controller.initialize()

        assert controller.qr.encoded_image.startswith("data:image/png;base64,")
        assert controller.qr_state()["has_qr"] is True


# ============================================================================
# Events emitted from the transport library's own thread
# ============================================================================

async def _drain(loop):
    """Wait until every callback scheduled before this call has run."""
    marker = loop.create_future()
    loop.call_soon(marker.set_result, None)
    await marker


class TestCrossThreadEvents:

    @pytest.mark.asyncio
    async def test_library_thread_events_applied_on_loop_in_order(self, controller, transport_factory):
        transport_factory.configure = lambda t: setattr(t, "auto_events", False)
        await controller.initialize()
        transport = transport_factory.latest
        assert controller.state == ClientState.INITIALIZING

        loop = asyncio.get_running_loop()
        loop_thread = threading.get_ident()
        handler_threads = []
        for event in ("qr", "authenticated", "ready"):
            transport.on(event, lambda *args: handler_threads.append(threading.get_ident()))

        def library_thread():
            transport.emit("qr", "2@pairing-payload")
            transport.emit("authenticated", SESSION_BLOB)
            transport.emit("ready")

        worker = threading.Thread(target=library_thread)
        worker.start()
        worker.join()
        await _drain(loop)

        assert handler_threads == [loop_thread] * 3
        assert controller.state == ClientState.READY
        assert _states(controller)[-3:] == [
            (ClientState.INITIALIZING, ClientState.AWAITING_AUTH),
            (ClientState.AWAITING_AUTH, ClientState.AUTHENTICATED),
            (ClientState.AUTHENTICATED, ClientState.READY),
        ]

    @pytest.mark.asyncio
    async def test_transport_constructed_with_loop(self, memory_store):
        loop = asyncio.get_running_loop()
        transport = FakeTransport(memory_store, None, SESSION_NAME, loop=loop)
        seen = []
        transport.on("qr", lambda payload: seen.append((payload, threading.get_ident())))

        worker = threading.Thread(target=transport.emit, args=("qr", "from-library"))
        worker.start()
        worker.join()
        assert seen == []
        await _drain(loop)

        assert seen == [("from-library", threading.get_ident())]

    @pytest.mark.asyncio
    async def test_emit_on_loop_thread_runs_immediately(self, memory_store):
        transport = FakeTransport(memory_store, None, SESSION_NAME, loop=asyncio.get_running_loop())
        seen = []
        transport.on("ready", lambda: seen.append("ready"))

        transport.emit("ready")

        assert seen == ["ready"]


class TestEventReplay:
    """The state after any event sequence equals the transition table applied in order."""

    EVENTS = [e.value for e in ClientEvent]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(20))
    async def test_random_sequences_follow_table(self, controller, transport_factory, tracker, seed):
        transport_factory.configure = lambda t: setattr(t, "auto_events", False)
        await controller.initialize()
        transport = transport_factory.latest
        assert controller.state == ClientState.INITIALIZING

        rng = random.Random(seed)
        sequence = [rng.choice(self.EVENTS) for _ in range(30)]
        before = Counter(_event_names(tracker))

        expected = ClientState.INITIALIZING
        for name in sequence:
            transport.emit(name, "payload")
            target = next_state(expected, ClientEvent(name))
            if target is not None:
                expected = target
            assert controller.state == expected

        # Every emitted event is recorded exactly once (ready as client_ready)
        emitted = Counter("client_ready" if name == "ready" else name for name in sequence)
        assert Counter(_event_names(tracker)) - before == emitted


def _event_names(tracker):
    return [
        e.name for e in tracker.auth_events + tracker.connection_events
        if e.name != "state_changed"
    ]


# ============================================================================
# recover()
# ============================================================================

class TestRecover:

    @pytest.mark.asyncio
    async def test_silent_drop_is_recovered_with_same_session(self, controller, transport_factory, memory_store):
        memory_store.documents[SESSION_NAME] = SESSION_BLOB
        await controller.initialize()
        old = transport_factory.latest
        old.drop_connection_silently()
        assert controller.has_drifted()

        result = await controller.recover()

        assert result.ok
        assert old.destroyed
        assert controller.handle is transport_factory.latest
        assert controller.handle is not old
        assert controller.state == ClientState.READY
        path = _states(controller)
        assert path[3:6] == [
            (ClientState.READY, ClientState.DEGRADED),
            (ClientState.DEGRADED, ClientState.REINITIALIZING),
            (ClientState.REINITIALIZING, ClientState.INITIALIZING),
        ]

    @pytest.mark.asyncio
    async def test_recover_without_drift_is_skipped(self, controller, memory_store, transport_factory):
        memory_store.documents[SESSION_NAME] = SESSION_BLOB
        await controller.initialize()

        result = await controller.recover()

        assert result.ok
        assert result.details == {"skipped": True}
        assert len(transport_factory.transports) == 1

    @pytest.mark.asyncio
    async def test_recover_failure_stays_degraded(self, controller, transport_factory, memory_store):
        memory_store.documents[SESSION_NAME] = SESSION_BLOB
        await controller.initialize()
        transport_factory.latest.emit("disconnected", "NAVIGATION")
        transport_factory.configure = lambda t: setattr(t, "fail_initialize", RuntimeError("still broken"))

        result = await controller.recover()

        assert not result.ok
        assert isinstance(result.error, ReinitFailed)
        assert controller.state == ClientState.DEGRADED

    @pytest.mark.asyncio
    async def test_recover_from_uninitialized_rejected(self, controller):
        result = await controller.recover()
        assert isinstance(result.error, PrereqNotMet)

    @pytest.mark.asyncio
    async def test_events_from_replaced_handle_are_stale(self, controller, transport_factory, memory_store, tracker):
        memory_store.documents[SESSION_NAME] = SESSION_BLOB
        await controller.initialize()
        old = transport_factory.latest
        old.emit("disconnected", "NAVIGATION")
        await controller.recover()
        state = controller.state

        old.emit("disconnected", "late")

        assert controller.state == state
        stale = tracker.connection_events[-1]
        assert stale.attributes["stale"] is True
        assert stale.attributes["applied"] is False

    @pytest.mark.asyncio
    async def test_abandoned_handle_on_destroy_failure(self, controller, transport_factory, memory_store):
        memory_store.documents[SESSION_NAME] = SESSION_BLOB
        await controller.initialize()
        old = transport_factory.latest
        old.fail_destroy = RuntimeError("browser hung")
        old.emit("disconnected", "NAVIGATION")

        result = await controller.recover()

        assert result.ok
        assert controller.handle is not old
        old.emit("ready")
        assert controller.state == ClientState.READY
        assert controller.generation > 1


# ============================================================================
# destroy() / flush()
# ============================================================================

class TestDestroyAndFlush:

    @pytest.mark.asyncio
    async def test_destroy_then_initialize_creates_new_handle(self, controller, transport_factory):
        await controller.initialize()
        first = transport_factory.latest

        result = await controller.destroy()
        assert result.ok
        assert controller.state == ClientState.DESTROYED
        assert controller.handle is None
        assert first.destroyed

        result = await controller.initialize()
        assert result.ok
        assert controller.handle is not first
        assert (ClientState.DESTROYED, ClientState.UNINITIALIZED) in _states(controller)

    @pytest.mark.asyncio
    async def test_destroy_failure_reports_abandoned(self, controller, transport_factory):
        await controller.initialize()
        transport_factory.latest.fail_destroy = RuntimeError("hung")

        result = await controller.destroy()

        assert result.ok
        assert result.details["abandoned"] is True
        assert controller.state == ClientState.DESTROYED

    @pytest.mark.asyncio
    async def test_destroy_twice(self, controller):
        await controller.destroy()
        result = await controller.destroy()
        assert result.ok
        assert controller.state == ClientState.DESTROYED

    @pytest.mark.asyncio
    async def test_flush_without_handle(self, controller):
        result = await controller.flush()
        assert isinstance(result.error, ClientHandleMissing)

    @pytest.mark.asyncio
    async def test_flush_requires_authentication(self, controller):
        await controller.initialize()
        result = await controller.flush()
        assert isinstance(result.error, SaveFailed)

    @pytest.mark.asyncio
    async def test_flush_persists_through_transport(self, controller, transport_factory, memory_store, tracker):
        await controller.initialize()
        transport_factory.latest.simulate_login()

        result = await controller.flush()

        assert result.ok
        assert transport_factory.latest.persist_calls == 1
        assert memory_store.documents[SESSION_NAME] == SESSION_BLOB
        assert tracker.last_save_timestamp is not None

    @pytest.mark.asyncio
    async def test_flush_failure_is_typed(self, controller, transport_factory, memory_store):
        await controller.initialize()
        transport_factory.latest.simulate_login()
        memory_store.available = False

        result = await controller.flush()

        assert not result.ok
        assert isinstance(result.error, SaveFailed)
        assert result.to_dict()["error_code"] == "SaveFailed"

    @pytest.mark.asyncio
    async def test_client_flags(self, controller, transport_factory):
        assert controller.client_flags() == {
            "exists": False,
            "initialized": False,
            "authenticated": False,
            "connected": False,
            "state": "uninitialized",
        }
        await controller.initialize()
        transport_factory.latest.simulate_login()

        flags = controller.client_flags()
        assert flags["exists"] and flags["initialized"] and flags["authenticated"] and flags["connected"]
        assert flags["state"] == "ready"
