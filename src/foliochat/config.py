"""Central configuration for paths, endpoints and constants."""

import os
from pathlib import Path

# Data directory, override with FOLIOCHAT_DATA_DIR env var
DATA_DIR = Path(
    os.environ.get("FOLIOCHAT_DATA_DIR", str(Path.home() / ".foliochat"))
)

# Key-value storage (stands in for the browser's localStorage)
STORAGE_PATH = DATA_DIR / "storage.db"
CONVERSATIONS_KEY = "foliochat_conversations"
LAST_VISIT_KEY = "lastVisitTimestamp"

# Proxy endpoints; when unset the Gemini API is called directly and tools run locally
MODEL_ENDPOINT = os.environ.get("FOLIOCHAT_MODEL_ENDPOINT")
TOOL_ENDPOINT = os.environ.get("FOLIOCHAT_TOOL_ENDPOINT")

# Gemini
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_API_BASE = os.environ.get(
    "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
)

# Last.fm
LASTFM_API_URL = "https://ws.audioscrobbler.com/2.0/"
LASTFM_API_KEY = os.environ.get("LASTFM_API_KEY")
LASTFM_USERNAME = os.environ.get("LASTFM_USERNAME")

# Network
REQUEST_TIMEOUT_S = float(os.environ.get("FOLIOCHAT_TIMEOUT", "60"))

# Chat engine
MAX_TOOL_DEPTH = 5  # Model->tool round trips allowed per turn
DEFAULT_TITLE = "New Chat"
OWNER_NAME = os.environ.get("FOLIOCHAT_OWNER", "Judson")
ASSISTANT_NAME = f"{OWNER_NAME}'s AI Assistant"

SYSTEM_INSTRUCTION = (
    f"You are {ASSISTANT_NAME}. You are creative, concise, and helpful. "
    f"You can use tools to get real-time information about the current time in India "
    f"and what music {OWNER_NAME} is listening to. "
    "For general conversation, respond directly."
)

# Seed new/cleared chats with a model greeting (off: chats start empty)
SEED_GREETING = os.environ.get("FOLIOCHAT_SEED_GREETING", "").lower() in ("1", "true", "yes")
NEW_CHAT_GREETING = f"Hello! I am {ASSISTANT_NAME}. How can I help you today?"
CLEARED_CHAT_GREETING = "Chat cleared. How can I help you now?"

# Current-time tool
TIME_ZONE = "Asia/Kolkata"
TIME_ZONE_LABEL = "IST (India Standard Time)"
