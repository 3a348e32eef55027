"""
Domain Interfaces - Ports for External Dependencies
==================================================
Abstract interfaces that define how domain layer communicates with infrastructure.
"""

from .storage import SessionStore, StoreConnection
from .transport import Transport, EventEmitterTransport, TransportFactory

__all__ = [
    # Storage interfaces
    'SessionStore', 'StoreConnection',
    # Transport interfaces
    'Transport', 'EventEmitterTransport', 'TransportFactory',
]
