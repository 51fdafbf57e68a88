"""Personalized welcome-back greeting based on the last visit."""

from __future__ import annotations

import logging
import time
from datetime import datetime

from .client import ModelClient
from .config import ASSISTANT_NAME
from .storage import LocalStorage

logger = logging.getLogger(__name__)


def build_greeting_prompt(last_visit: float) -> str:
    when = datetime.fromtimestamp(last_visit).strftime("%Y-%m-%d %H:%M")
    return (
        f"The user is returning to the website. Their last visit was {when}. "
        "Generate a very short, friendly, and creative welcome back message (1-2 sentences). "
        f"You are {ASSISTANT_NAME}."
    )


async def welcome_back(storage: LocalStorage, model: ModelClient, now: float | None = None) -> str | None:
    """Return a greeting for a returning visitor, then record this visit.

    First-time visitors get ``None``. Model failures are logged and also give ``None``.
    """
    last_visit = storage.get_last_visit()
    greeting: str | None = None

    if last_visit is not None:
        try:
            reply = await model.send_prompt(build_greeting_prompt(last_visit))
            greeting = (reply.text or "").strip() or None
        except Exception:
            logger.warning("Failed to get AI greeting", exc_info=True)

    storage.set_last_visit(time.time() if now is None else now)
    return greeting
