"""SQLite-backed key-value storage for conversations and visit metadata."""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from pydantic import ValidationError

from .config import CONVERSATIONS_KEY, LAST_VISIT_KEY
from .models import Conversation

logger = logging.getLogger(__name__)


class LocalStorage:
    """Durable string key-value store, the local stand-in for browser localStorage.

    Every write is committed before the call returns, so the last write wins
    and a crash never loses anything that was already saved.
    """

    def __init__(self, db_path: Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _migrate(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
        """)
        self.conn.commit()

    def get_item(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str):
        self.conn.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )
        self.conn.commit()

    def remove_item(self, key: str):
        self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self.conn.commit()

    def clear(self):
        self.conn.execute("DELETE FROM kv")
        self.conn.commit()

    def load_conversations(self) -> dict[str, Conversation]:
        """Load the conversation mapping, keeping its stored (creation) order.

        A payload that cannot be decoded is logged and treated as empty.
        """
        raw = self.get_item(CONVERSATIONS_KEY)
        if not raw:
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored conversations are not valid JSON, starting fresh", exc_info=True)
            return {}

        if not isinstance(data, dict):
            logger.warning("Stored conversations are not a JSON object, starting fresh")
            return {}

        conversations: dict[str, Conversation] = {}
        for conv_id, record in data.items():
            if not isinstance(record, dict):
                logger.warning("Skipping malformed conversation record '%s'", conv_id)
                continue
            try:
                conversations[conv_id] = Conversation.model_validate({**record, "id": conv_id})
            except ValidationError:
                logger.warning("Skipping unreadable conversation '%s'", conv_id, exc_info=True)

        return conversations

    def save_conversations(self, conversations: dict[str, Conversation]):
        """Serialize and store the entire mapping in one write."""
        payload = {conv_id: conv.to_wire() for conv_id, conv in conversations.items()}
        self.set_item(CONVERSATIONS_KEY, json.dumps(payload, ensure_ascii=False))

    def get_last_visit(self) -> float | None:
        raw = self.get_item(LAST_VISIT_KEY)
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            logger.warning("Ignoring unreadable last-visit timestamp %r", raw)
            return None

    def set_last_visit(self, timestamp: float):
        self.set_item(LAST_VISIT_KEY, repr(float(timestamp)))

    def close(self):
        self.conn.close()
