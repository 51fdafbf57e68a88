"""Tools the chatbot model may call, and the registry that executes them."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

import httpx

from . import config

logger = logging.getLogger(__name__)

ToolFn = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class ToolRegistry:
    """Named async tools plus the Gemini declarations advertising them.

    Tool results are plain JSON objects. Failures are reported in-band as
    ``{"error": "..."}`` rather than raised.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        lastfm_api_key: str | None = config.LASTFM_API_KEY,
        lastfm_username: str | None = config.LASTFM_USERNAME,
    ):
        self._http_client = http_client
        self._owns_client = http_client is None
        self._lastfm_api_key = lastfm_api_key
        self._lastfm_username = lastfm_username
        self._tools: dict[str, tuple[str, ToolFn]] = {
            "get_now_playing": (
                f"Get the song currently being played by {config.OWNER_NAME} on Last.fm.",
                self.get_now_playing,
            ),
            "get_current_time": (
                "Get the current time in India.",
                self.get_current_time,
            ),
        }

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def declarations(self) -> list[dict[str, Any]]:
        """Function declarations in the shape Gemini's ``tools`` field expects."""
        return [{"name": name, "description": desc} for name, (desc, _) in self._tools.items()]

    async def execute(self, name: str, args: dict[str, Any] | None = None) -> dict[str, Any]:
        entry = self._tools.get(name)
        if entry is None:
            return {"error": f"Unknown tool: {name}"}
        _, fn = entry
        logger.debug("Executing tool %s with args %s", name, args)
        return await fn(args or {})

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=config.REQUEST_TIMEOUT_S)
        return self._http_client

    async def get_now_playing(self, args: dict[str, Any]) -> dict[str, Any]:
        if not self._lastfm_api_key or not self._lastfm_username:
            return {"error": "Server not configured for Last.fm API."}

        params = {
            "method": "user.getrecenttracks",
            "user": self._lastfm_username,
            "api_key": self._lastfm_api_key,
            "format": "json",
            "limit": 1,
        }
        try:
            response = await self._client().get(config.LASTFM_API_URL, params=params)
        except httpx.RequestError as e:
            logger.warning("Last.fm request failed: %s", e)
            return {"error": "Error connecting to Last.fm."}

        if response.is_error:
            logger.warning("Last.fm returned HTTP %s", response.status_code)
            return {"error": "Failed to fetch data from Last.fm."}

        try:
            data = response.json()
        except ValueError:
            return {"error": "Failed to fetch data from Last.fm."}

        if not isinstance(data, dict):
            logger.warning("Unexpected Last.fm payload: %r", data)
            return {"error": "Failed to fetch data from Last.fm."}

        recent = data.get("recenttracks") or {}
        tracks = recent.get("track") or [] if isinstance(recent, dict) else None
        # A single recent track may come back as an object instead of a list
        if isinstance(tracks, dict):
            tracks = [tracks]
        track = tracks[0] if isinstance(tracks, list) and tracks else None
        if not isinstance(tracks, list) or not isinstance(track, (dict, type(None))):
            logger.warning("Unexpected Last.fm payload: %r", data)
            return {"error": "Failed to fetch data from Last.fm."}

        if track and _field(track, "@attr", "nowplaying") == "true":
            return {
                "artist": _field(track, "artist", "#text"),
                "song": track.get("name", ""),
                "album": _field(track, "album", "#text"),
            }
        return {"status": "Not currently playing anything."}

    async def get_current_time(self, args: dict[str, Any]) -> dict[str, Any]:
        now = datetime.now(ZoneInfo(config.TIME_ZONE))
        return {"time": now.strftime("%I:%M %p"), "timezone": config.TIME_ZONE_LABEL}

    async def aclose(self):
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


def _field(obj: dict[str, Any], key: str, subkey: str) -> str:
    """``obj[key][subkey]`` for Last.fm's nested ``{"#text": ...}`` fields, or ``""``."""
    value = obj.get(key)
    return value.get(subkey, "") if isinstance(value, dict) else ""
