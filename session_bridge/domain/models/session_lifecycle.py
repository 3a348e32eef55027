"""
Client Session Lifecycle Models
===============================

Provides:
- ClientState enum with explicit lifecycle states of the automation client
- ClientEvent enum with the event names emitted by the transport
- EVENT_TRANSITIONS table driving event-based state changes
- SessionEvent / StateTransition records for the observability ledger
- QRArtifact, the ephemeral pairing payload shown to an operator
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Any, Dict


class ClientState(Enum):
    """
    Lifecycle states of the automation client handle.

    State Machine:
        [UNINITIALIZED] ──initialize()──► [INITIALIZING] ──qr──► [AWAITING_AUTH]
                                               │                     │
                                          authenticated         authenticated
                                               ▼                     ▼
                                         [AUTHENTICATED] ──ready──► [READY]
                                                                     │
                                                                disconnected
                                                                     ▼
        [INITIALIZING] ◄──success── [REINITIALIZING] ◄──recover()── [DEGRADED]

        auth_failure (INITIALIZING / AWAITING_AUTH) ──► [AUTH_FAILED] (restart() only)
        any state ──destroy()──► [DESTROYED] ──initialize()──► [UNINITIALIZED] ──► ...
    """
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AWAITING_AUTH = "awaiting_auth"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DEGRADED = "degraded"
    REINITIALIZING = "reinitializing"
    DESTROYED = "destroyed"
    AUTH_FAILED = "auth_failed"


class ClientEvent(str, Enum):
    """Event names emitted by the transport."""
    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth_failure"
    # Informational only: recorded, never change state
    REMOTE_SESSION_SAVED = "remote_session_saved"
    LOADING_SCREEN = "loading_screen"
    CREDS_SAVED = "creds_saved"
    CONNECT_FAILURE = "connect_failure"


INFORMATIONAL_EVENTS = frozenset({
    ClientEvent.REMOTE_SESSION_SAVED,
    ClientEvent.LOADING_SCREEN,
    ClientEvent.CREDS_SAVED,
    ClientEvent.CONNECT_FAILURE,
})

# States in which a live handle exists and initialize() must not create another one
LIVE_STATES = frozenset({
    ClientState.INITIALIZING,
    ClientState.AWAITING_AUTH,
    ClientState.AUTHENTICATED,
    ClientState.READY,
    ClientState.REINITIALIZING,
})

AUTHENTICATED_STATES = frozenset({ClientState.AUTHENTICATED, ClientState.READY})


# Event-driven transitions: event -> {from_state: to_state}
EVENT_TRANSITIONS: Dict[ClientEvent, Dict[ClientState, ClientState]] = {
    ClientEvent.QR: {
        ClientState.INITIALIZING: ClientState.AWAITING_AUTH,
        ClientState.AWAITING_AUTH: ClientState.AWAITING_AUTH,  # QR refresh
        ClientState.REINITIALIZING: ClientState.AWAITING_AUTH,
    },
    ClientEvent.AUTHENTICATED: {
        ClientState.INITIALIZING: ClientState.AUTHENTICATED,  # restored session, no QR
        ClientState.AWAITING_AUTH: ClientState.AUTHENTICATED,
        ClientState.REINITIALIZING: ClientState.AUTHENTICATED,
    },
    ClientEvent.READY: {
        ClientState.AUTHENTICATED: ClientState.READY,
        ClientState.DEGRADED: ClientState.READY,  # transport resumed on its own
    },
    ClientEvent.DISCONNECTED: {
        ClientState.READY: ClientState.DEGRADED,
        ClientState.AUTHENTICATED: ClientState.DEGRADED,
        ClientState.AWAITING_AUTH: ClientState.DEGRADED,
    },
    ClientEvent.AUTH_FAILURE: {
        ClientState.INITIALIZING: ClientState.AUTH_FAILED,
        ClientState.AWAITING_AUTH: ClientState.AUTH_FAILED,
        ClientState.REINITIALIZING: ClientState.AUTH_FAILED,
    },
}


# Operation-driven transitions (initialize / recover / restart / destroy)
VALID_STATE_TRANSITIONS = {
    ClientState.UNINITIALIZED: [ClientState.INITIALIZING, ClientState.DESTROYED],
    ClientState.INITIALIZING: [ClientState.DEGRADED, ClientState.DESTROYED],
    ClientState.AWAITING_AUTH: [ClientState.DEGRADED, ClientState.DESTROYED],
    ClientState.AUTHENTICATED: [ClientState.DEGRADED, ClientState.DESTROYED],
    ClientState.READY: [ClientState.DEGRADED, ClientState.DESTROYED],
    ClientState.DEGRADED: [ClientState.REINITIALIZING, ClientState.DESTROYED],
    ClientState.REINITIALIZING: [ClientState.INITIALIZING, ClientState.DEGRADED, ClientState.DESTROYED],
    ClientState.AUTH_FAILED: [ClientState.DESTROYED],
    ClientState.DESTROYED: [ClientState.UNINITIALIZED],
}


def next_state(state: ClientState, event: ClientEvent) -> Optional[ClientState]:
    """
    Apply the event transition table.

    Returns:
        The new state, or None if the event does not change state from `state`
    """
    return EVENT_TRANSITIONS.get(event, {}).get(state)


def is_valid_transition(from_state: ClientState, to_state: ClientState) -> bool:
    """
    Check if an operation-driven state transition is valid.

    Args:
        from_state: Current state
        to_state: Target state

    Returns:
        True if transition is valid, False otherwise
    """
    allowed = VALID_STATE_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionEvent:
    """One entry of the tracker's bounded event logs."""
    name: str
    timestamp: datetime
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "timestamp": self.timestamp.isoformat(),
            **self.attributes,
        }


@dataclass(frozen=True)
class StateTransition:
    """
    Audit entry for a controller state change.

    Captures all state changes for debugging and status reporting.
    """
    from_state: ClientState
    to_state: ClientState
    trigger: str  # event name or operation ("initialize", "recover", ...)
    generation: int
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "trigger": self.trigger,
            "generation": self.generation,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class QRArtifact:
    """Rendered pairing QR code, valid for a couple of minutes."""
    encoded_image: str  # data: URL
    generated_at: datetime = field(default_factory=utc_now)

    def age_minutes(self, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        return int((now - self.generated_at).total_seconds() // 60)

    def is_expired(self, expiry_minutes: int = 2, now: Optional[datetime] = None) -> bool:
        return self.age_minutes(now) > expiry_minutes


def describe_qr(qr: Optional[QRArtifact], expiry_minutes: int = 2,
                now: Optional[datetime] = None) -> Dict[str, Any]:
    """QR state for the status surface. Never includes the image itself."""
    if qr is None:
        return {"has_qr": False, "timestamp": None, "age": None, "is_expired": None}
    return {
        "has_qr": True,
        "timestamp": qr.generated_at.isoformat(),
        "age": f"{qr.age_minutes(now)} minutes",
        "is_expired": qr.is_expired(expiry_minutes, now),
    }
