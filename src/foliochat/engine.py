"""The chat turn state machine: user message -> model -> (tool -> model)* -> text."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Protocol

from .client import ModelClient, ToolExecutor
from .config import MAX_TOOL_DEPTH
from .errors import ChatError, ConversationNotFoundError, FormatError
from .models import Message
from .store import ConversationStore
from .titles import TitleGenerator

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    AWAITING_TOOL = "awaiting_tool"


class ChatView(Protocol):
    """What the engine needs from whatever is displaying the chat."""

    def show_message(self, role: str, text: str) -> None: ...

    def show_tool_indicator(self, name: str) -> None: ...

    def show_error(self, text: str) -> None: ...

    def set_thinking(self, thinking: bool) -> None: ...

    def set_title(self, conversation_id: str, title: str) -> None: ...


class NullView:
    def show_message(self, role: str, text: str) -> None:
        pass

    def show_tool_indicator(self, name: str) -> None:
        pass

    def show_error(self, text: str) -> None:
        pass

    def set_thinking(self, thinking: bool) -> None:
        pass

    def set_title(self, conversation_id: str, title: str) -> None:
        pass


class ChatEngine:
    """Runs one turn at a time against the current conversation.

    A turn is bound to the conversation that was current when it started;
    switching conversations mid-turn does not redirect its messages. While a
    turn is in flight (``is_thinking``) new submissions are rejected.
    """

    def __init__(
        self,
        store: ConversationStore,
        model: ModelClient,
        tools: ToolExecutor,
        view: ChatView | None = None,
        title_generator: TitleGenerator | None = None,
        max_tool_depth: int = MAX_TOOL_DEPTH,
    ):
        self.store = store
        self.model = model
        self.tools = tools
        self.view: ChatView = view or NullView()
        self.titles = title_generator or TitleGenerator(store, model, self.view)
        self.max_tool_depth = max_tool_depth
        self._state = EngineState.IDLE
        self._background: set[asyncio.Task] = set()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_thinking(self) -> bool:
        return self._state is not EngineState.IDLE

    def _set_state(self, state: EngineState):
        was_thinking = self.is_thinking
        self._state = state
        if was_thinking != self.is_thinking:
            self.view.set_thinking(self.is_thinking)

    def _is_visible(self, conversation_id: str) -> bool:
        return self.store.current_id == conversation_id

    def _show(self, conversation_id: str, role: str, text: str):
        if self._is_visible(conversation_id):
            self.view.show_message(role, text)

    def _show_error(self, conversation_id: str, text: str):
        logger.info("Turn in %s ended with: %s", conversation_id, text)
        if self._is_visible(conversation_id):
            self.view.show_error(text)

    async def process_user_message(self, text: str) -> bool:
        """Run a full turn. Returns False when the input was rejected."""
        text = (text or "").strip()
        if not text or self.is_thinking:
            return False

        if self.store.current_id is None:
            self.store.create_conversation()
        conversation_id = self.store.current_id

        self.store.append_message(conversation_id, Message.user_text(text))
        self._show(conversation_id, "user", text)
        self._set_state(EngineState.AWAITING_MODEL)
        try:
            answered = await self._run_turn(conversation_id)
        finally:
            self._set_state(EngineState.IDLE)

        if answered:
            self._maybe_generate_title(conversation_id)
        return True

    async def _run_turn(self, conversation_id: str) -> bool:
        try:
            return await self._model_loop(conversation_id)
        except ConversationNotFoundError:
            logger.warning("Conversation %s was deleted mid-turn; dropping the reply", conversation_id)
            return False

    async def _model_loop(self, conversation_id: str) -> bool:
        tool_calls = 0
        while True:
            conv = self.store.get(conversation_id)
            if conv is None:
                raise ConversationNotFoundError(conversation_id)

            self._set_state(EngineState.AWAITING_MODEL)
            try:
                reply = await self.model.send_history(list(conv.messages))
                if reply.text is None and reply.function_call is None:
                    raise FormatError("Invalid AI response format.")
            except ChatError as e:
                self._show_error(conversation_id, f"Error: {e}")
                return False

            if reply.text is not None:
                self.store.append_message(conversation_id, reply)
                self._show(conversation_id, "model", reply.text)
                return True

            call = reply.function_call
            if tool_calls >= self.max_tool_depth:
                self._show_error(
                    conversation_id,
                    f"Tool error: too many tool calls in one turn (limit {self.max_tool_depth}).",
                )
                return False

            self.store.append_message(conversation_id, reply)
            if self._is_visible(conversation_id):
                self.view.show_tool_indicator(call.name)
            self._set_state(EngineState.AWAITING_TOOL)
            try:
                result = await self.tools.execute(call.name, call.args)
            except ChatError as e:
                self._show_error(conversation_id, f"Tool error: {e}")
                return False

            self.store.append_message(conversation_id, Message.tool_result(call.name, result))
            tool_calls += 1

    def _maybe_generate_title(self, conversation_id: str):
        conv = self.store.get(conversation_id)
        if conv is None or conv.user_message_count != 1:
            return
        task = asyncio.create_task(self.titles.generate(conversation_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self):
        """Wait for background title generation to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self):
        await self.drain()
        await self.model.aclose()
        await self.tools.aclose()
