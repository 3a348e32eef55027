"""
Domain Models
"""

from .session_lifecycle import (
    ClientState,
    ClientEvent,
    QRArtifact,
    SessionEvent,
    StateTransition,
    EVENT_TRANSITIONS,
    INFORMATIONAL_EVENTS,
    LIVE_STATES,
    AUTHENTICATED_STATES,
    describe_qr,
    next_state,
    is_valid_transition,
)

__all__ = [
    'ClientState', 'ClientEvent', 'QRArtifact', 'SessionEvent', 'StateTransition',
    'EVENT_TRANSITIONS', 'INFORMATIONAL_EVENTS', 'LIVE_STATES', 'AUTHENTICATED_STATES',
    'describe_qr', 'next_state', 'is_valid_transition',
]
