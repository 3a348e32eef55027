"""
Document store adapters
"""

from .mongo_connection import MongoConnection
from .mongo_session_store import MongoSessionStore

__all__ = ['MongoConnection', 'MongoSessionStore']
