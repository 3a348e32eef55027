"""
Core module for the session bridge
"""

from .utils import (
    redact_endpoint,
    redact_session_id,
    redact_url,
    redact_user_id,
)

__all__ = [
    'redact_endpoint',
    'redact_session_id',
    'redact_url',
    'redact_user_id',
]
