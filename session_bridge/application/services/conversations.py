"""
Conversation Registry
=====================
In-memory map of end users currently inside the intake conversation.

The message-intake handler, which lives outside this package, writes here
through `Container.conversations` (set_state / get_state / clear) as a user
moves through the ticket questions. The status surface only reads a
redacted view.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from session_bridge.core.utils import redact_user_id


@dataclass
class ConversationState:
    step: str
    issue_type: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class ConversationRegistry:

    def __init__(self):
        self._users: Dict[str, ConversationState] = {}

    def set_state(self, user_id: str, step: str, issue_type: Optional[str] = None, **data) -> ConversationState:
        state = self._users.get(user_id)
        if state is None:
            state = ConversationState(step=step, issue_type=issue_type)
            self._users[user_id] = state
        else:
            state.step = step
            if issue_type is not None:
                state.issue_type = issue_type
        state.data.update(data)
        return state

    def get_state(self, user_id: str) -> Optional[ConversationState]:
        return self._users.get(user_id)

    def clear(self, user_id: str) -> None:
        self._users.pop(user_id, None)

    def get_user_states(self) -> Dict[str, Any]:
        """Active users with ids stripped of their platform domain. Collected data is never exposed."""
        users = list(self._users.items())
        return {
            "active_users": len(users),
            "users": [
                {
                    "id": redact_user_id(user_id),
                    "step": state.step,
                    "issue_type": state.issue_type,
                }
                for user_id, state in users
            ],
        }
