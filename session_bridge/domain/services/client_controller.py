"""
Client Lifecycle Controller
===========================
Owns the automation-client handle and drives it through the ClientState
machine.

- initialize / recover / restart / destroy are serialized by one asyncio.Lock,
  so at most one transport instance ever claims the session
- transport callbacks are applied synchronously on the event loop in arrival
  order; they never wait for the lock
- callbacks from a replaced handle (older generation) are recorded as stale
  and never applied
- public operations return OperationResult instead of raising
"""

import asyncio
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from session_bridge.core.exceptions import (
    BrowserDisconnected,
    ClientHandleMissing,
    ClientInitFailed,
    OperationResult,
    PrereqNotMet,
    ReinitFailed,
    SaveFailed,
)
from session_bridge.core.logger import get_logger
from session_bridge.core.utils import describe_error, extract_session_id, redact_session_id
from session_bridge.domain.interfaces.storage import SessionStore, StoreConnection
from session_bridge.domain.interfaces.transport import Transport, TransportFactory
from session_bridge.domain.models.session_lifecycle import (
    AUTHENTICATED_STATES,
    INFORMATIONAL_EVENTS,
    LIVE_STATES,
    ClientEvent,
    ClientState,
    QRArtifact,
    StateTransition,
    describe_qr,
    is_valid_transition,
    next_state,
)
from session_bridge.domain.services.session_tracker import SessionStateTracker

logger = get_logger("client_controller")

MAX_TRANSITIONS = 100

# Tracker event names that differ from the transport event name
_TRACKER_EVENT_NAMES = {
    ClientEvent.READY: "client_ready",
}


def _event_attributes(event: ClientEvent, args: Tuple[Any, ...]) -> Dict[str, Any]:
    """Loggable attributes of a transport event. Raw QR payloads and blobs never appear here."""
    first = args[0] if args else None
    if event == ClientEvent.AUTHENTICATED:
        return {
            "has_session_data": bool(first),
            "session_id": redact_session_id(extract_session_id(first)),
        }
    if event in (ClientEvent.AUTH_FAILURE, ClientEvent.CONNECT_FAILURE):
        return {"error": str(first) if first is not None else None}
    if event == ClientEvent.DISCONNECTED:
        return {"reason": str(first) if first is not None else None}
    if event == ClientEvent.LOADING_SCREEN:
        return {"percent": first, "message": args[1] if len(args) > 1 else None}
    return {}


class ClientLifecycleController:
    """
    Single owner of the transport handle.

    Other components only get read-only snapshots (state, qr_state(),
    client_flags(), transitions) and typed results of the operations.
    """

    def __init__(
        self,
        store: SessionStore,
        connection: StoreConnection,
        tracker: SessionStateTracker,
        transport_factory: TransportFactory,
        client_settings: Any,
        collection_name: str,
        session_name: str,
        qr_encoder: Optional[Callable[[str], str]] = None,
    ):
        self._store = store
        self._connection = connection
        self._tracker = tracker
        self._transport_factory = transport_factory
        self._client_settings = client_settings
        self._collection_name = collection_name
        self._session_name = session_name
        self._qr_encoder = qr_encoder
        self._qr_expiry_minutes = getattr(client_settings, "qr_expiry_minutes", 2)

        self._state = ClientState.UNINITIALIZED
        self._handle: Optional[Transport] = None
        self._generation = 0
        self._qr: Optional[QRArtifact] = None
        self._transitions: Deque[StateTransition] = deque(maxlen=MAX_TRANSITIONS)
        self._lock = asyncio.Lock()

    # === Snapshots ===

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def handle(self) -> Optional[Transport]:
        return self._handle

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def qr(self) -> Optional[QRArtifact]:
        return self._qr

    @property
    def transitions(self) -> List[StateTransition]:
        return list(self._transitions)

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    def qr_state(self) -> Dict[str, Any]:
        return describe_qr(self._qr, self._qr_expiry_minutes)

    def client_flags(self) -> Dict[str, Any]:
        """Client status without secrets. Transport probes that fail report False."""
        handle = self._handle
        return {
            "exists": handle is not None,
            "initialized": self._probe(handle, "is_initialized"),
            "authenticated": self._probe(handle, "is_authenticated"),
            "connected": self._probe(handle, "is_connected"),
            "state": self._state.value,
        }

    def is_authenticated(self) -> bool:
        return self._state in AUTHENTICATED_STATES or self._probe(self._handle, "is_authenticated")

    def has_drifted(self) -> bool:
        """Authenticated per state, but the transport connection is not live."""
        if self._handle is None or self._state not in AUTHENTICATED_STATES:
            return False
        return not self._probe(self._handle, "is_connected")

    @staticmethod
    def _probe(handle: Optional[Transport], method: str) -> bool:
        if handle is None:
            return False
        try:
            return bool(getattr(handle, method)())
        except Exception as e:
            logger.warning("client_controller.probe_failed", {
                "probe": method,
                "error": describe_error(e),
            })
            return False

    # === State changes ===

    def _transition(self, to_state: ClientState, trigger: str) -> None:
        from_state = self._state
        self._state = to_state
        transition = StateTransition(
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
            generation=self._generation,
        )
        self._transitions.append(transition)
        self._tracker.record_event("state_changed", {
            "from_state": from_state.value,
            "to_state": to_state.value,
            "trigger": trigger,
        })
        logger.info("client_controller.state_changed", transition.to_dict())

    def _set_state(self, to_state: ClientState, trigger: str) -> bool:
        """Operation-driven transition, skipped if the table does not allow it."""
        if not is_valid_transition(self._state, to_state):
            logger.warning("client_controller.transition_skipped", {
                "from_state": self._state.value,
                "to_state": to_state.value,
                "trigger": trigger,
            })
            return False
        self._transition(to_state, trigger)
        return True

    def _clear_qr(self) -> None:
        self._qr = None

    # === Transport callbacks ===

    def _register_handlers(self, transport: Transport, generation: int) -> None:
        for event in ClientEvent:
            transport.on(event.value, self._make_handler(generation, event))

    def _make_handler(self, generation: int, event: ClientEvent):
        def handler(*args):
            self.handle_event(generation, event, *args)
        return handler

    def handle_event(self, generation: int, event: ClientEvent, *args: Any) -> None:
        """
        Apply one transport event. Never raises into the transport library.

        Every event is recorded in the tracker, including stale ones and
        those with no transition from the current state.
        """
        tracker_name = _TRACKER_EVENT_NAMES.get(event, event.value)
        attributes = _event_attributes(event, args)

        try:
            if generation != self._generation:
                attributes.update({"stale": True, "applied": False, "generation": generation})
                self._tracker.record_event(tracker_name, attributes)
                logger.warning("client_controller.stale_event", {
                    "event": event.value,
                    "event_generation": generation,
                    "current_generation": self._generation,
                })
                return

            if event in INFORMATIONAL_EVENTS:
                self._tracker.record_event(tracker_name, attributes)
                logger.info("client_controller.transport_event", {"event": event.value, **attributes})
                return

            if event in (ClientEvent.AUTHENTICATED, ClientEvent.DISCONNECTED, ClientEvent.READY):
                self._clear_qr()

            target = next_state(self._state, event)
            if event == ClientEvent.QR and target is not None:
                self._store_qr(args[0] if args else "")

            if target is None:
                attributes.update({"applied": False, "state": self._state.value})
                self._tracker.record_event(tracker_name, attributes)
                logger.warning("client_controller.event_not_applied", {
                    "event": event.value,
                    "state": self._state.value,
                })
                return

            attributes["applied"] = True
            self._tracker.record_event(tracker_name, attributes)
            if target != self._state:
                self._transition(target, event.value)
            if event == ClientEvent.AUTH_FAILURE:
                logger.error("client_controller.auth_failed", {
                    "error": attributes.get("error"),
                    "hint": "call restart() after resolving the failure",
                })
        except Exception as e:
            logger.error("client_controller.event_handling_failed", {
                "event": event.value,
                "error": describe_error(e),
            }, exc_info=True)

    def _store_qr(self, payload: Any) -> None:
        if self._qr_encoder is None:
            self._qr = QRArtifact(encoded_image=str(payload))
            return
        try:
            self._qr = QRArtifact(encoded_image=self._qr_encoder(str(payload)))
        except Exception as e:
            self._qr = None
            logger.error("client_controller.qr_encode_failed", {"error": describe_error(e)})
            return
        logger.info("client_controller.qr_received", {"expires_in_minutes": self._qr_expiry_minutes})

    # === Handle management ===

    def _create_handle(self) -> Transport:
        self._generation += 1
        transport = self._transport_factory(self._store, self._client_settings, self._session_name)
        self._register_handlers(transport, self._generation)
        self._handle = transport
        return transport

    async def _destroy_handle(self, trigger: str) -> bool:
        """
        Destroy the current handle. On failure the handle is abandoned, and
        the generation bump makes any later callback from it stale.
        """
        handle = self._handle
        self._handle = None
        self._generation += 1
        self._clear_qr()
        if handle is None:
            return True
        try:
            await handle.destroy()
            logger.info("client_controller.handle_destroyed", {"trigger": trigger})
            return True
        except Exception as e:
            logger.error("client_controller.handle_abandoned", {
                "trigger": trigger,
                "error": describe_error(e),
            })
            return False

    async def _start_handle(self, trigger: str, error_cls) -> OperationResult:
        try:
            transport = self._create_handle()
        except Exception as e:
            logger.error("client_controller.handle_create_failed", {
                "trigger": trigger,
                "error": describe_error(e),
            }, exc_info=True)
            # UNINITIALIZED has no edge to DEGRADED; a failed first create stays there
            if self._state == ClientState.REINITIALIZING:
                self._set_state(ClientState.DEGRADED, trigger)
            return OperationResult.failure(
                trigger, error_cls(f"Failed to create client: {describe_error(e)}", cause=e),
                state=self._state.value,
            )

        generation = self._generation
        self._set_state(ClientState.INITIALIZING, trigger)

        try:
            await transport.initialize()
        except Exception as e:
            logger.error("client_controller.initialize_failed", {
                "trigger": trigger,
                "error": describe_error(e),
            })
            if generation == self._generation:
                self._set_state(ClientState.DEGRADED, trigger)
            return OperationResult.failure(
                trigger, error_cls(f"Client initialization failed: {describe_error(e)}", cause=e),
                state=self._state.value,
            )

        return OperationResult.success(trigger, state=self._state.value, generation=generation)

    # === Public operations ===

    async def initialize(self) -> OperationResult:
        """
        Create and start a transport handle.

        No-op while a handle is live. DEGRADED goes through recover() and
        AUTH_FAILED through restart().
        """
        async with self._lock:
            return await self._initialize_locked()

    async def _initialize_locked(self) -> OperationResult:
        if self._state in LIVE_STATES:
            logger.info("client_controller.initialize_noop", {"state": self._state.value})
            return OperationResult.success("initialize", state=self._state.value, reused=True)

        if self._state == ClientState.DEGRADED:
            return OperationResult.failure(
                "initialize", PrereqNotMet("Client is degraded; use recover()"), state=self._state.value
            )
        if self._state == ClientState.AUTH_FAILED:
            return OperationResult.failure(
                "initialize", PrereqNotMet("Authentication failed; use restart()"), state=self._state.value
            )

        if self._state == ClientState.DESTROYED:
            self._set_state(ClientState.UNINITIALIZED, "initialize")

        if not await self._connection.ping():
            logger.warning("client_controller.initialize_prereq_failed", {"reason": "store unreachable"})
            return OperationResult.failure(
                "initialize", PrereqNotMet("Session store is not reachable"), state=self._state.value
            )

        try:
            await self._connection.ensure_collection(self._collection_name)
        except Exception as e:
            logger.error("client_controller.ensure_collection_failed", {"error": describe_error(e)})
            return OperationResult.failure(
                "initialize",
                PrereqNotMet(f"Session collection unavailable: {describe_error(e)}", cause=e),
                state=self._state.value,
            )

        return await self._start_handle("initialize", ClientInitFailed)

    async def recover(self) -> OperationResult:
        """
        Replace a dead handle with a new one for the same session.

        The stored blob is still present, so the transport can resume without
        a new QR scan. On failure the controller stays DEGRADED and the health
        monitor retries on a later cycle.
        """
        async with self._lock:
            if self._state in AUTHENTICATED_STATES:
                if not self.has_drifted():
                    return OperationResult.success("recover", state=self._state.value, skipped=True)
                drift = BrowserDisconnected("Authenticated but transport connection is not live")
                logger.warning("client_controller.drift_detected", {
                    "state": self._state.value,
                    "error": drift.message,
                })
                self._tracker.record_event("browser_disconnected", {"state": self._state.value})
                self._set_state(ClientState.DEGRADED, "drift")

            if self._state != ClientState.DEGRADED:
                return OperationResult.failure(
                    "recover",
                    PrereqNotMet(f"Cannot recover from state {self._state.value}"),
                    state=self._state.value,
                )

            self._set_state(ClientState.REINITIALIZING, "recover")
            await self._destroy_handle("recover")
            return await self._start_handle("recover", ReinitFailed)

    async def restart(self) -> OperationResult:
        """Destroy the handle and initialize again. The only way out of AUTH_FAILED."""
        async with self._lock:
            await self._destroy_locked("restart")
            return await self._initialize_locked()

    async def destroy(self) -> OperationResult:
        async with self._lock:
            return await self._destroy_locked("destroy")

    async def _destroy_locked(self, trigger: str) -> OperationResult:
        clean = await self._destroy_handle(trigger)
        if self._state != ClientState.DESTROYED:
            self._set_state(ClientState.DESTROYED, trigger)
        return OperationResult.success("destroy", state=self._state.value, abandoned=not clean)

    async def flush(self) -> OperationResult:
        """
        Force an immediate session persist through the transport's hook.

        Not serialized with the lifecycle lock: it only reads the handle, and
        shutdown must be able to flush while a recovery is stuck.
        """
        handle = self._handle
        if handle is None:
            return OperationResult.failure(
                "flush", ClientHandleMissing("Client not available for session save"),
                state=self._state.value,
            )
        if not self.is_authenticated():
            return OperationResult.failure(
                "flush", SaveFailed("Client is not authenticated"), state=self._state.value
            )

        logger.info("client_controller.flush_started", {"state": self._state.value})
        try:
            await handle.persist_session()
        except Exception as e:
            logger.error("client_controller.flush_failed", {"error": describe_error(e)})
            self._tracker.record_event("session_flush_failed", {"error": describe_error(e)})
            return OperationResult.failure(
                "flush", SaveFailed(f"Session save failed: {describe_error(e)}", cause=e),
                state=self._state.value,
            )

        self._tracker.record_event("session_flushed", {"success": True})
        logger.info("client_controller.flush_completed", {})
        return OperationResult.success("flush", state=self._state.value)
