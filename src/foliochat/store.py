"""In-memory conversation store with write-through persistence."""

from __future__ import annotations

import logging
import time
from typing import Callable

from .config import CLEARED_CHAT_GREETING, NEW_CHAT_GREETING
from .errors import ConversationNotFoundError
from .models import Conversation, Message
from .storage import LocalStorage

logger = logging.getLogger(__name__)


class ConversationStore:
    """Owns every conversation and the "current conversation" pointer.

    The mapping keeps insertion order, which is creation order. Each mutating
    call saves the whole mapping before returning. ``current_id`` is either
    ``None`` or the id of a stored conversation.
    """

    def __init__(
        self,
        storage: LocalStorage,
        seed_greeting: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self._seed_greeting = seed_greeting
        self._clock = clock
        self.conversations: dict[str, Conversation] = storage.load_conversations()
        self.current_id: str | None = None

        if self.conversations:
            self.current_id = next(reversed(self.conversations))

    def __len__(self) -> int:
        return len(self.conversations)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self.conversations

    @property
    def current(self) -> Conversation | None:
        if self.current_id is None:
            return None
        return self.conversations.get(self.current_id)

    def get(self, conversation_id: str) -> Conversation | None:
        return self.conversations.get(conversation_id)

    def _require(self, conversation_id: str) -> Conversation:
        conv = self.conversations.get(conversation_id)
        if conv is None:
            raise ConversationNotFoundError(conversation_id)
        return conv

    def _save(self):
        self.storage.save_conversations(self.conversations)

    def _new_id(self, created_at: float) -> str:
        base = f"chat_{int(created_at * 1000)}"
        conv_id = base
        salt = 0
        # Two creations in the same millisecond get a numeric suffix
        while conv_id in self.conversations:
            salt += 1
            conv_id = f"{base}_{salt}"
        return conv_id

    def _opening_messages(self, greeting: str) -> list[Message]:
        if not self._seed_greeting:
            return []
        return [Message.model_text(greeting)]

    def create_conversation(self) -> str:
        created_at = self._clock()
        conv_id = self._new_id(created_at)
        self.conversations[conv_id] = Conversation(
            id=conv_id,
            created_at=created_at,
            messages=self._opening_messages(NEW_CHAT_GREETING),
        )
        self.current_id = conv_id
        self._save()
        logger.debug("Created conversation %s", conv_id)
        return conv_id

    def load_conversation(self, conversation_id: str) -> Conversation | None:
        """Make a conversation current. Unknown ids are ignored."""
        conv = self.conversations.get(conversation_id)
        if conv is None:
            return None
        self.current_id = conversation_id
        return conv

    def clear_conversation(self, conversation_id: str):
        """Drop a conversation's messages but keep its entry and title."""
        conv = self.conversations.get(conversation_id)
        if conv is None:
            return
        conv.messages = self._opening_messages(CLEARED_CHAT_GREETING)
        self._save()

    def delete_conversation(self, conversation_id: str):
        if conversation_id not in self.conversations:
            return
        del self.conversations[conversation_id]
        if self.current_id == conversation_id:
            self.current_id = next(reversed(self.conversations), None)
        self._save()
        logger.debug("Deleted conversation %s, current is now %s", conversation_id, self.current_id)

    def append_message(self, conversation_id: str, message: Message):
        self._require(conversation_id).messages.append(message)
        self._save()

    def set_title(self, conversation_id: str, title: str):
        self._require(conversation_id).title = title
        self._save()

    def list_conversations(self) -> list[Conversation]:
        """Conversations for the history list, newest first."""
        return list(reversed(self.conversations.values()))

    def stats(self) -> dict:
        by_role = {"user": 0, "model": 0, "tool": 0}
        for conv in self.conversations.values():
            for msg in conv.messages:
                by_role[msg.role] += 1
        total = sum(by_role.values())
        count = len(self.conversations)
        return {
            "total_conversations": count,
            "total_messages": total,
            "messages_by_role": by_role,
            "avg_messages_per_conversation": round(total / count, 1) if count else 0,
        }

    def close(self):
        self.storage.close()
