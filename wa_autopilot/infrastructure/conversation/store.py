"""
Conversation Store - Short-Term Dialogue Memory
================================================

Keeps the last few turns per sender so follow-up questions make sense to
the model. In-memory only: a restart forgets everything, which is fine for
a chat assistant.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_TURNS = 20


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    role: Role
    text: str

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.text}


class ConversationStore:
    """
    Per-sender bounded history.

    Each write builds a new tuple and replaces the dict entry, so readers
    never observe a half-applied append.
    """

    def __init__(self, max_turns: int = MAX_TURNS):
        self._max_turns = max_turns
        self._histories: Dict[str, tuple[Turn, ...]] = {}

    @property
    def max_turns(self) -> int:
        return self._max_turns

    def _extend(self, sender_id: str, *turns: Turn) -> None:
        history = self._histories.get(sender_id, ()) + turns
        # Keep the most recent turns
        self._histories[sender_id] = history[-self._max_turns:]

    def append(self, sender_id: str, role: Role, text: str) -> None:
        self._extend(sender_id, Turn(role, text))

    def append_exchange(self, sender_id: str, user_text: str, reply: str) -> None:
        """Record a user message and the assistant reply together."""
        self._extend(sender_id, Turn(Role.USER, user_text), Turn(Role.ASSISTANT, reply))

    def get(self, sender_id: str) -> List[Turn]:
        return list(self._histories.get(sender_id, ()))

    def clear(self, sender_id: Optional[str] = None) -> bool:
        """Clear one sender, or everyone when no id is given."""
        if sender_id is None:
            had_any = bool(self._histories)
            self._histories = {}
            logger.info("All conversation history cleared")
            return had_any

        if sender_id not in self._histories:
            return False
        histories = dict(self._histories)
        del histories[sender_id]
        self._histories = histories
        logger.info(f"Conversation history cleared for {sender_id}")
        return True

    def stats(self) -> dict:
        histories = self._histories
        return {
            "totalUsers": len(histories),
            "totalMessages": sum(len(h) for h in histories.values()),
        }

    def summaries(self) -> dict:
        return {
            sender_id: {
                "messageCount": len(history),
                "lastMessage": history[-1].text if history else None,
            }
            for sender_id, history in self._histories.items()
        }
