"""Shared fixtures and fakes for the foliochat test suite."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from foliochat.models import FunctionCall, FunctionCallPart, Message
from foliochat.storage import LocalStorage
from foliochat.store import ConversationStore


def text_reply(text: str) -> Message:
    return Message.model_text(text)


def call_reply(name: str, args: Optional[Dict[str, Any]] = None) -> Message:
    return Message(role="model", parts=[FunctionCallPart(function_call=FunctionCall(name=name, args=args or {}))])


class FakeModel:
    """Scripted model client. Exceptions in the script are raised instead of returned."""

    def __init__(self, replies=(), prompt_replies=()):
        self.replies = list(replies)
        self.prompt_replies = list(prompt_replies)
        self.histories: List[List[dict]] = []
        self.prompts: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    async def send_history(self, history):
        self.histories.append([m.to_wire() for m in history])
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def send_prompt(self, prompt):
        self.prompts.append(prompt)
        reply = self.prompt_replies.pop(0) if self.prompt_replies else text_reply("Untitled Chat")
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def aclose(self):
        self.closed = True


class FakeTools:
    def __init__(self, results=None):
        self.results = results or {}
        self.calls: List[tuple] = []
        self.closed = False

    async def execute(self, name, args):
        self.calls.append((name, args))
        result = self.results[name]
        if isinstance(result, Exception):
            raise result
        return result

    async def aclose(self):
        self.closed = True


class RecordingView:
    def __init__(self):
        self.messages: List[tuple] = []
        self.tool_indicators: List[str] = []
        self.errors: List[str] = []
        self.thinking: List[bool] = []
        self.titles: List[tuple] = []

    def show_message(self, role, text):
        self.messages.append((role, text))

    def show_tool_indicator(self, name):
        self.tool_indicators.append(name)

    def show_error(self, text):
        self.errors.append(text)

    def set_thinking(self, thinking):
        self.thinking.append(thinking)

    def set_title(self, conversation_id, title):
        self.titles.append((conversation_id, title))


class TickingClock:
    """Deterministic clock; ``frozen=True`` keeps returning the same instant."""

    def __init__(self, start: float = 1_700_000_000.0, frozen: bool = False):
        self.now = start
        self.frozen = frozen

    def __call__(self) -> float:
        value = self.now
        if not self.frozen:
            self.now += 1.0
        return value


@pytest.fixture()
def storage(tmp_path) -> LocalStorage:
    s = LocalStorage(tmp_path / "storage.db")
    yield s
    s.close()


@pytest.fixture()
def store(storage) -> ConversationStore:
    return ConversationStore(storage, clock=TickingClock())


@pytest.fixture()
def view() -> RecordingView:
    return RecordingView()
