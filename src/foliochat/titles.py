"""Best-effort conversation titles from a one-shot model call."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from .models import Message

if TYPE_CHECKING:
    from .client import ModelClient
    from .engine import ChatView
    from .store import ConversationStore

logger = logging.getLogger(__name__)

TITLE_INSTRUCTION = (
    "Based on the following conversation, create a very short, concise title (3-5 words max)."
)

_QUOTES_RE = re.compile("[\"“”„«»`]")
_EDGE_CHARS = " \t\r\n'‘’*#.:!-_"


def _message_line(message: Message) -> str:
    if message.text is not None:
        return f"{message.role}: {message.text}"
    call = message.function_call or message.function_response
    return f"{message.role}: [tool {call.name}]" if call else f"{message.role}:"


def build_title_prompt(messages: list[Message]) -> str:
    lines = "\n".join(_message_line(m) for m in messages)
    return f"{TITLE_INSTRUCTION}\n\nConversation:\n{lines}"


def clean_title(raw: str) -> str:
    """Strip the quotes and markdown/punctuation models like to wrap titles in."""
    title = _QUOTES_RE.sub("", raw.strip().splitlines()[0] if raw.strip() else "")
    return title.strip(_EDGE_CHARS).strip()


class TitleGenerator:
    def __init__(self, store: ConversationStore, model: ModelClient, view: ChatView | None = None):
        self.store = store
        self.model = model
        self.view = view

    async def generate(self, conversation_id: str) -> str | None:
        """Title a conversation. Never raises; failures keep the old title."""
        conv = self.store.get(conversation_id)
        if conv is None:
            return None

        prompt = build_title_prompt(conv.messages)
        try:
            reply = await self.model.send_prompt(prompt)
        except Exception:
            logger.warning("Could not generate title for %s", conversation_id, exc_info=True)
            return None

        title = clean_title(reply.text or "")
        if not title:
            logger.warning("Title reply for %s had no usable text", conversation_id)
            return None

        if conversation_id not in self.store:
            return None
        self.store.set_title(conversation_id, title)
        if self.view is not None:
            self.view.set_title(conversation_id, title)
        logger.debug("Titled %s: %s", conversation_id, title)
        return title
