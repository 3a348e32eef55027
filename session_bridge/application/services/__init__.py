from .conversations import ConversationRegistry
from .session_cleanup import CleanupResult, SessionCleanupService

__all__ = ['ConversationRegistry', 'CleanupResult', 'SessionCleanupService']
