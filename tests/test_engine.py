import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import FakeModel, FakeTools, call_reply, text_reply
from foliochat.client import GeminiModelClient, LocalToolExecutor
from foliochat.engine import ChatEngine, EngineState
from foliochat.errors import FormatError, NetworkFailure, ServiceError, ToolFailure
from foliochat.models import FunctionResponse, FunctionResponsePart, Message
from foliochat.tools import ToolRegistry


def make_engine(store, view, replies=(), tool_results=None, prompt_replies=(), **kwargs):
    model = FakeModel(replies, prompt_replies)
    tools = FakeTools(tool_results)
    return ChatEngine(store, model, tools, view, **kwargs), model, tools


async def wait_until(predicate):
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.mark.asyncio
async def test_text_reply_and_title(store, view):
    engine, model, _ = make_engine(
        store, view, replies=[text_reply("Hi there!")], prompt_replies=[text_reply('"Friendly Hello."')]
    )
    conv_id = store.create_conversation()

    assert await engine.process_user_message("hello") is True
    await engine.drain()

    conv = store.get(conv_id)
    assert [(m.role, m.text) for m in conv.messages] == [("user", "hello"), ("model", "Hi there!")]
    assert view.messages == [("user", "hello"), ("model", "Hi there!")]
    assert len(model.prompts) == 1
    assert "user: hello" in model.prompts[0]
    assert "model: Hi there!" in model.prompts[0]
    assert conv.title == "Friendly Hello"
    assert view.titles == [(conv_id, "Friendly Hello")]
    assert engine.state is EngineState.IDLE


@pytest.mark.asyncio
async def test_tool_call_round_trip(store, view):
    engine, model, tools = make_engine(
        store,
        view,
        replies=[call_reply("get_now_playing"), text_reply("You're listening to B by A.")],
        tool_results={"get_now_playing": {"artist": "A", "song": "B", "album": "C"}},
    )
    conv_id = store.create_conversation()

    await engine.process_user_message("what's playing?")
    await engine.drain()

    messages = store.get(conv_id).messages
    assert [m.role for m in messages] == ["user", "model", "tool", "model"]
    assert messages[1].function_call.name == "get_now_playing"
    assert messages[2].function_response.name == "get_now_playing"
    assert messages[2].function_response.response == {"artist": "A", "song": "B", "album": "C"}
    assert messages[3].text == "You're listening to B by A."
    assert tools.calls == [("get_now_playing", {})]
    assert view.tool_indicators == ["get_now_playing"]
    # The second model call saw the call and its result
    assert len(model.histories) == 2
    assert len(model.histories[1]) == 3
    assert model.histories[1][2]["parts"][0]["functionResponse"]["name"] == "get_now_playing"


@pytest.mark.asyncio
async def test_service_error_leaves_only_user_message(store, view):
    engine, _, _ = make_engine(store, view, replies=[ServiceError(500, "An internal server error occurred.")])
    conv_id = store.create_conversation()

    await engine.process_user_message("hello")

    assert [m.role for m in store.get(conv_id).messages] == ["user"]
    assert view.errors == ["Error: An internal server error occurred."]
    assert engine.is_thinking is False
    assert view.thinking == [True, False]


@pytest.mark.asyncio
async def test_network_failure_is_reported(store, view):
    engine, _, _ = make_engine(store, view, replies=[NetworkFailure("Could not reach the AI service.")])
    store.create_conversation()

    await engine.process_user_message("hello")

    assert view.errors == ["Error: Could not reach the AI service."]
    assert engine.state is EngineState.IDLE


@pytest.mark.asyncio
async def test_reply_without_text_or_call_is_format_error(store, view):
    odd = Message(
        role="model",
        parts=[FunctionResponsePart(function_response=FunctionResponse(name="x", response={}))],
    )
    engine, _, _ = make_engine(store, view, replies=[odd])
    conv_id = store.create_conversation()

    await engine.process_user_message("hello")

    assert [m.role for m in store.get(conv_id).messages] == ["user"]
    assert view.errors == ["Error: Invalid AI response format."]


@pytest.mark.asyncio
async def test_client_format_error_is_reported(store, view):
    engine, _, _ = make_engine(store, view, replies=[FormatError("Invalid AI response format.")])
    store.create_conversation()

    await engine.process_user_message("hello")

    assert view.errors == ["Error: Invalid AI response format."]


@pytest.mark.asyncio
async def test_tool_failure_keeps_call_record_only(store, view):
    engine, model, _ = make_engine(
        store,
        view,
        replies=[call_reply("get_now_playing")],
        tool_results={"get_now_playing": ToolFailure("Tool execution failed.")},
    )
    conv_id = store.create_conversation()

    await engine.process_user_message("what's playing?")
    await engine.drain()

    assert [m.role for m in store.get(conv_id).messages] == ["user", "model"]
    assert view.errors == ["Tool error: Tool execution failed."]
    assert len(model.histories) == 1
    assert engine.is_thinking is False


@pytest.mark.asyncio
async def test_tool_loop_is_bounded(store, view):
    engine, model, tools = make_engine(
        store,
        view,
        replies=[call_reply("get_current_time")] * 3,
        tool_results={"get_current_time": {"time": "10:00 AM", "timezone": "IST"}},
        max_tool_depth=2,
    )
    conv_id = store.create_conversation()

    await engine.process_user_message("what time is it?")

    assert len(tools.calls) == 2
    assert len(model.histories) == 3
    assert [m.role for m in store.get(conv_id).messages] == ["user", "model", "tool", "model", "tool"]
    assert view.errors == ["Tool error: too many tool calls in one turn (limit 2)."]
    assert engine.state is EngineState.IDLE


@pytest.mark.asyncio
async def test_empty_input_is_rejected(store, view):
    engine, model, _ = make_engine(store, view)
    store.create_conversation()

    assert await engine.process_user_message("   ") is False
    assert model.histories == []
    assert store.current.messages == []


@pytest.mark.asyncio
async def test_input_rejected_while_thinking(store, view):
    engine, model, _ = make_engine(store, view, replies=[text_reply("done")])
    model.gate = asyncio.Event()
    conv_id = store.create_conversation()

    turn = asyncio.create_task(engine.process_user_message("first"))
    await wait_until(lambda: model.histories)

    assert engine.is_thinking
    assert engine.state is EngineState.AWAITING_MODEL
    assert await engine.process_user_message("second") is False
    assert len(store.get(conv_id).messages) == 1

    model.gate.set()
    assert await turn is True
    await engine.drain()
    assert [m.text for m in store.get(conv_id).messages] == ["first", "done"]


@pytest.mark.asyncio
async def test_creates_conversation_when_none_selected(store, view):
    engine, _, _ = make_engine(store, view, replies=[text_reply("hi")])

    await engine.process_user_message("hello")
    await engine.drain()

    assert len(store) == 1
    assert len(store.current.messages) == 2


@pytest.mark.asyncio
async def test_title_generated_only_once(store, view):
    engine, model, _ = make_engine(store, view, replies=[text_reply("one"), text_reply("two"), text_reply("three")])
    store.create_conversation()

    for text in ("a", "b", "c"):
        await engine.process_user_message(text)
        await engine.drain()

    assert len(model.prompts) == 1


@pytest.mark.asyncio
async def test_no_title_when_first_turn_failed(store, view):
    engine, model, _ = make_engine(store, view, replies=[ServiceError(503, "busy"), text_reply("ok")])
    store.create_conversation()

    await engine.process_user_message("a")
    await engine.process_user_message("b")
    await engine.drain()

    assert model.prompts == []


@pytest.mark.asyncio
async def test_title_failure_keeps_default(store, view):
    engine, _, _ = make_engine(
        store, view, replies=[text_reply("hi")], prompt_replies=[NetworkFailure("offline")]
    )
    conv_id = store.create_conversation()

    await engine.process_user_message("hello")
    await engine.drain()

    assert store.get(conv_id).title == "New Chat"
    assert view.titles == []
    assert view.errors == []


@pytest.mark.asyncio
async def test_reply_goes_to_conversation_that_issued_it(store, view):
    engine, model, _ = make_engine(store, view, replies=[text_reply("late answer")])
    model.gate = asyncio.Event()
    original = store.create_conversation()

    turn = asyncio.create_task(engine.process_user_message("question"))
    await wait_until(lambda: model.histories)
    other = store.create_conversation()
    model.gate.set()
    await turn
    await engine.drain()

    assert [m.text for m in store.get(original).messages] == ["question", "late answer"]
    assert store.get(other).messages == []
    # Not rendered into the conversation now on screen
    assert ("model", "late answer") not in view.messages


@pytest.mark.asyncio
async def test_conversation_deleted_mid_turn(store, view):
    engine, model, _ = make_engine(store, view, replies=[text_reply("late answer")])
    model.gate = asyncio.Event()
    conv_id = store.create_conversation()

    turn = asyncio.create_task(engine.process_user_message("question"))
    await wait_until(lambda: model.histories)
    store.delete_conversation(conv_id)
    model.gate.set()

    assert await turn is True
    await engine.drain()
    assert conv_id not in store
    assert store.current_id is None
    assert engine.state is EngineState.IDLE


@pytest.mark.asyncio
async def test_aclose_closes_collaborators(store, view):
    engine, model, tools = make_engine(store, view)

    await engine.aclose()

    assert model.closed and tools.closed


@pytest.mark.asyncio
async def test_malformed_gemini_candidate_is_reported(store, view):
    http = AsyncMock(spec=httpx.AsyncClient)
    http.post = AsyncMock(return_value=httpx.Response(200, json={"candidates": [{"content": "oops"}]}))
    model = GeminiModelClient("test-key", http_client=http)
    engine = ChatEngine(store, model, FakeTools(), view)
    conv_id = store.create_conversation()

    assert await engine.process_user_message("hello") is True

    assert view.errors == ["Error: Invalid AI response format."]
    assert [m.role for m in store.get(conv_id).messages] == ["user"]
    assert engine.state is EngineState.IDLE


@pytest.mark.asyncio
async def test_malformed_lastfm_payload_is_tool_error(store, view):
    http = AsyncMock(spec=httpx.AsyncClient)
    http.get = AsyncMock(return_value=httpx.Response(200, json=["not", "an", "object"]))
    registry = ToolRegistry(http_client=http, lastfm_api_key="key", lastfm_username="judson")
    engine, _, _ = make_engine(store, view, replies=[call_reply("get_now_playing")])
    engine.tools = LocalToolExecutor(registry)
    conv_id = store.create_conversation()

    await engine.process_user_message("what's playing?")

    assert view.errors == ["Tool error: Failed to fetch data from Last.fm."]
    assert [m.role for m in store.get(conv_id).messages] == ["user", "model"]
    assert engine.state is EngineState.IDLE


@pytest.mark.asyncio
async def test_tool_that_raises_is_tool_error(store, view):
    registry = ToolRegistry()
    registry.execute = AsyncMock(side_effect=TypeError("boom"))
    engine, _, _ = make_engine(store, view, replies=[call_reply("get_current_time")])
    engine.tools = LocalToolExecutor(registry)
    store.create_conversation()

    await engine.process_user_message("what time is it?")

    assert view.errors == ["Tool error: Tool get_current_time failed: boom"]
    assert engine.state is EngineState.IDLE
