"""
Transport Interfaces - Port for the messaging automation client
===============================================================
The transport is the external library driving the remote, browser-based
messaging session. It emits lifecycle events and exposes a small control
surface; everything else about it is out of scope here.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from .storage import SessionStore

if TYPE_CHECKING:
    from ...infrastructure.config.settings import ClientSettings

EventHandler = Callable[..., Any]


class Transport(ABC):
    """
    Interface for the automation client.

    Events: qr, authenticated, ready, disconnected, auth_failure, plus the
    informational remote_session_saved, loading_screen, creds_saved and
    connect_failure.
    """

    @abstractmethod
    def on(self, event: str, handler: EventHandler) -> None:
        """Register a callback for an event name"""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """Start the client. Restores the stored session if one exists."""
        pass

    @abstractmethod
    async def destroy(self) -> None:
        """Tear the client down and release its browser/socket"""
        pass

    @abstractmethod
    def is_authenticated(self) -> bool:
        pass

    @abstractmethod
    def is_initialized(self) -> bool:
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the underlying connection is live right now"""
        pass

    @abstractmethod
    async def persist_session(self) -> None:
        """Credential-persist hook: write the current session to the store now"""
        pass


class EventEmitterTransport(Transport):
    """
    Base class providing the handler registry.

    Subclasses call emit() from wherever their library reports events. When
    emit() is called anywhere but the owning loop, callbacks are scheduled
    onto that loop with call_soon_threadsafe, which keeps arrival order.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._loop = loop

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def on(self, event: str, handler: EventHandler) -> None:
        if self._loop is None:
            try:
                self.bind_loop(asyncio.get_running_loop())
            except RuntimeError:
                pass
        self._handlers[event].append(handler)

    def _on_owning_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def emit(self, event: str, *args: Any) -> None:
        handlers = list(self._handlers.get(event, ()))
        if not handlers:
            return

        if self._loop is not None and not self._on_owning_loop():
            for handler in handlers:
                self._loop.call_soon_threadsafe(handler, *args)
            return

        for handler in handlers:
            handler(*args)


# Builds a transport bound to the (tracker-wrapped) session store, saving and
# restoring under the given fixed session name
TransportFactory = Callable[[SessionStore, 'ClientSettings', str], Transport]
