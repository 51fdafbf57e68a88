"""FastMCP server exposing saved chats and the chatbot's tools."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from mcp.server.fastmcp import FastMCP

from .config import DATA_DIR, STORAGE_PATH
from .models import Conversation
from .storage import LocalStorage
from .tools import ToolRegistry

# Logging to stderr only, stdout is the MCP JSON-RPC transport
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)

mcp = FastMCP(
    "foliochat",
    instructions=(
        "Browse the portfolio chatbot's saved conversations and use its live tools. "
        "Use list_conversations to see chats newest first, get_conversation to read one, "
        "get_now_playing for the site owner's current Last.fm track and "
        "get_current_time for the time in India."
    ),
)

# Singletons reused across tool calls
_storage: LocalStorage | None = None
_registry: ToolRegistry | None = None


def _get_storage() -> LocalStorage:
    global _storage
    if _storage is None:
        _storage = LocalStorage(STORAGE_PATH)
    return _storage


def _get_registry() -> ToolRegistry:
    global _registry
    if _registry is None:
        _registry = ToolRegistry()
    return _registry


def _load() -> list[Conversation]:
    """Saved conversations, newest first. Re-read on every call so CLI edits show up."""
    return list(reversed(_get_storage().load_conversations().values()))


def _format_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _message_body(msg) -> str:
    if msg.text is not None:
        return msg.text
    if msg.function_call is not None:
        return f"[called tool `{msg.function_call.name}`]"
    response = msg.function_response
    return f"[tool `{response.name}` returned {json.dumps(response.response)}]"


@mcp.tool()
def list_conversations(limit: int = 20, offset: int = 0) -> str:
    """Browse saved chatbot conversations, newest first.

    Args:
        limit: Maximum results (default 20)
        offset: Skip this many results (for pagination)
    """
    conversations = _load()
    page = conversations[offset : offset + limit]
    if not page:
        return "No conversations found."

    lines = [f"Conversations (showing {offset + 1}–{offset + len(page)} of {len(conversations)}):\n"]
    for i, c in enumerate(page, offset + 1):
        lines.append(f"{i}. **{c.title}** ({_format_ts(c.created_at)})")
        lines.append(f"   ID: `{c.id}` | {len(c.messages)} msgs")

    if offset + limit < len(conversations):
        lines.append(f"\nMore available, use offset={offset + limit} to see the next page.")
    return "\n".join(lines)


@mcp.tool()
def get_conversation(conversation_id: str) -> str:
    """Retrieve a full chatbot conversation transcript.

    Args:
        conversation_id: The conversation id (from list_conversations)
    """
    conv = _get_storage().load_conversations().get(conversation_id)
    if conv is None:
        return f"Conversation not found: {conversation_id}"

    lines = [f"# {conv.title}", f"Date: {_format_ts(conv.created_at)}", "", "---", ""]
    labels = {"user": "**User**", "model": "**AI**", "tool": "**Tool**"}
    for msg in conv.messages:
        lines.append(f"{labels[msg.role]}:")
        lines.append(_message_body(msg))
        lines.append("")
    return "\n".join(lines)


@mcp.tool()
def get_stats() -> str:
    """Get statistics about the saved chatbot conversations."""
    conversations = _load()
    total = sum(len(c.messages) for c in conversations)
    return "\n".join(
        [
            "# Chatbot Statistics",
            "",
            f"- **Conversations**: {len(conversations):,}",
            f"- **Messages**: {total:,}",
            f"\n*Data stored in: {DATA_DIR}*",
        ]
    )


@mcp.tool()
async def get_now_playing() -> str:
    """Get the song the site owner is currently playing on Last.fm."""
    return json.dumps(await _get_registry().execute("get_now_playing"))


@mcp.tool()
async def get_current_time() -> str:
    """Get the current time in India."""
    return json.dumps(await _get_registry().execute("get_current_time"))
