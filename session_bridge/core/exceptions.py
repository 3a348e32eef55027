"""
Core Exceptions - Session Bridge
================================
Centralized exception definitions and the typed operation result returned
by the client lifecycle controller.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class SessionBridgeError(Exception):
    """Base exception for session lifecycle and persistence faults."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)

    @property
    def code(self) -> str:
        return type(self).__name__


class StoreUnavailable(SessionBridgeError):
    """
    Raised when the document store cannot be reached.

    Only transport/connectivity faults map here; "no record" is never an error.

    HTTP Status: 503 Service Unavailable
    """
    pass


class StoreWriteFailed(SessionBridgeError):
    """
    Raised when the store is reachable but rejects a write.

    HTTP Status: 500 Internal Server Error
    """
    pass


class ClientHandleMissing(SessionBridgeError):
    """Raised when an operation needs the automation client but none exists."""
    pass


class BrowserDisconnected(SessionBridgeError):
    """
    Transport-level drift: the session is authenticated but the underlying
    connection is no longer live.
    """
    pass


class AuthFailure(SessionBridgeError):
    """Raised when the transport reports an authentication failure."""
    pass


class SaveFailed(SessionBridgeError):
    """Raised when a forced session flush could not be completed."""
    pass


class ReinitFailed(SessionBridgeError):
    """Raised when recovery could not re-initialize the transport."""
    pass


class PrereqNotMet(SessionBridgeError):
    """Raised when an operation is called before its prerequisites hold."""
    pass


class ClientInitFailed(SessionBridgeError):
    """Raised when the first initialize() of a fresh transport handle fails."""
    pass


@dataclass
class OperationResult:
    """
    Typed outcome of a controller operation.

    Callers (health monitor, shutdown coordinator, admin endpoints) decide
    for themselves whether a failure is retried or only logged.
    """
    ok: bool
    operation: str
    state: Optional[str] = None
    error: Optional[SessionBridgeError] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, operation: str, state: Optional[str] = None, **details) -> 'OperationResult':
        return cls(ok=True, operation=operation, state=state, details=details)

    @classmethod
    def failure(cls, operation: str, error: SessionBridgeError, state: Optional[str] = None, **details) -> 'OperationResult':
        return cls(ok=False, operation=operation, state=state, error=error, details=details)

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        """Render for API responses. Error messages are produced by this package and carry no secrets."""
        body: Dict[str, Any] = {
            "status": "success" if self.ok else "failed",
            "message": self.error.message if self.error else f"{self.operation} completed",
            "operation": self.operation,
            "state": self.state,
        }
        if self.error:
            body["error_code"] = self.error.code
        if self.details:
            body["details"] = self.details
        return body
