"""Failure taxonomy for model and tool calls.

Every :class:`ChatError` is recovered at the chat engine boundary: it is
rendered as an error line and the engine returns to idle.
"""

from __future__ import annotations

__all__ = [
    "ChatError",
    "ConversationNotFoundError",
    "FormatError",
    "NetworkFailure",
    "ServiceError",
    "ToolFailure",
]


class ChatError(RuntimeError):
    """Base class for recoverable chat failures."""


class NetworkFailure(ChatError):
    """The request never completed (connection refused, DNS, reset...)."""


class ServiceError(ChatError):
    """The endpoint answered with a non-2xx status."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class FormatError(ChatError):
    """A 2xx response was missing the fields the engine expects."""


class ToolFailure(ChatError):
    """The tool endpoint failed or reported an ``error`` field."""


class ConversationNotFoundError(KeyError):
    """No conversation is stored under the given id."""

    def __init__(self, conversation_id: str):
        super().__init__(conversation_id)
        self.conversation_id = conversation_id

    def __str__(self) -> str:
        return f"Conversation not found: {self.conversation_id}"
