"""HTTP clients for the model endpoint and the tool executor."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from . import config
from .errors import FormatError, NetworkFailure, ServiceError, ToolFailure
from .models import Message
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "I'm sorry, I couldn't generate a response. Please try again."
GENERIC_MODEL_ERROR = "An error occurred while communicating with the AI. Please try again."


@runtime_checkable
class ModelClient(Protocol):
    async def send_history(self, history: list[Message]) -> Message: ...

    async def send_prompt(self, prompt: str) -> Message: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class ToolExecutor(Protocol):
    async def execute(self, name: str, args: dict[str, Any]) -> dict[str, Any]: ...

    async def aclose(self) -> None: ...


def _error_message(response: httpx.Response, default: str) -> str:
    """Pull a human-readable message out of an error response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or default
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message:
            return message
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str) and error:
            return error
    return default


def _parse_message(data: Any, source: str) -> Message:
    try:
        return Message.model_validate(data)
    except ValidationError as e:
        logger.debug("%s: invalid message payload %r", source, data)
        raise FormatError("Invalid AI response format.") from e


class _JsonPoster:
    """Shared POST-JSON plumbing with the failure mapping used by the model clients."""

    _name: str = "client"

    def __init__(self, http_client: httpx.AsyncClient | None = None, timeout: float = config.REQUEST_TIMEOUT_S):
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str] | None = None) -> Any:
        logger.debug("%s: POST %s %s", self._name, url, json.dumps(payload, default=str)[:2000])
        try:
            response = await self._http_client.post(url, json=payload, headers=headers)
        except httpx.RequestError as e:
            logger.error("%s: request error calling %s: %s", self._name, url, e)
            raise NetworkFailure(f"Could not reach the AI service ({type(e).__name__}).") from e

        if response.is_error:
            message = _error_message(response, response.reason_phrase or GENERIC_MODEL_ERROR)
            logger.error("%s: HTTP %s from %s: %s", self._name, response.status_code, url, message)
            raise ServiceError(response.status_code, message)

        try:
            return response.json()
        except ValueError as e:
            logger.error("%s: undecodable JSON from %s", self._name, url)
            raise FormatError("The AI service returned malformed JSON.") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()


class ProxyModelClient(_JsonPoster):
    """Talks to the chatbot's model proxy: ``{history}``/``{prompt}`` in, ``{response}`` out."""

    _name = "model-proxy"

    def __init__(self, endpoint: str, http_client: httpx.AsyncClient | None = None, timeout: float = config.REQUEST_TIMEOUT_S):
        super().__init__(http_client, timeout)
        self.endpoint = endpoint

    async def _call(self, payload: dict[str, Any]) -> Message:
        data = await self._post(self.endpoint, payload)
        if not isinstance(data, dict) or "response" not in data:
            raise FormatError("Invalid AI response format.")
        return _parse_message(data["response"], self._name)

    async def send_history(self, history: list[Message]) -> Message:
        return await self._call({"history": [m.to_wire() for m in history]})

    async def send_prompt(self, prompt: str) -> Message:
        return await self._call({"prompt": prompt})


class GeminiModelClient(_JsonPoster):
    """Calls Gemini ``generateContent`` directly.

    Adds the assistant's system instruction and tool declarations to every
    history request, the way the site's serverless proxy does.
    """

    _name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = config.GEMINI_MODEL,
        tools: ToolRegistry | None = None,
        api_base: str = config.GEMINI_API_BASE,
        system_instruction: str = config.SYSTEM_INSTRUCTION,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = config.REQUEST_TIMEOUT_S,
    ):
        super().__init__(http_client, timeout)
        self._api_key = api_key
        self.model = model
        self._tools = tools
        self._url = f"{api_base.rstrip('/')}/models/{model}:generateContent"
        self._system_instruction = system_instruction

    @staticmethod
    def _to_content(message: Message) -> dict[str, Any]:
        content = message.to_wire()
        # Gemini only knows "user" and "model"; function responses travel as user content
        if content["role"] == "tool":
            content["role"] = "user"
        return content

    def _payload(self, contents: list[dict[str, Any]], with_tools: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "systemInstruction": {"parts": [{"text": self._system_instruction}]},
            "contents": contents,
        }
        if with_tools and self._tools is not None:
            payload["tools"] = [{"functionDeclarations": self._tools.declarations()}]
        return payload

    async def _generate(self, payload: dict[str, Any]) -> Message:
        data = await self._post(self._url, payload, headers={"x-goog-api-key": self._api_key})
        if not isinstance(data, dict):
            raise FormatError("Invalid AI response format.")

        candidates = data.get("candidates") or []
        if not isinstance(candidates, list):
            raise FormatError("Invalid AI response format.")
        candidate = candidates[0] if candidates else {}
        if not isinstance(candidate, dict):
            raise FormatError("Invalid AI response format.")

        content = candidate.get("content")
        if content is not None and not isinstance(content, dict):
            raise FormatError("Invalid AI response format.")
        if not content or not content.get("parts"):
            logger.warning("gemini: no usable candidate (finish=%s)", candidate.get("finishReason"))
            return Message.model_text(NO_RESPONSE_TEXT)

        content.setdefault("role", "model")
        return _parse_message(content, self._name)

    async def send_history(self, history: list[Message]) -> Message:
        return await self._generate(self._payload([self._to_content(m) for m in history], with_tools=True))

    async def send_prompt(self, prompt: str) -> Message:
        return await self._generate(self._payload([self._to_content(Message.user_text(prompt))], with_tools=False))


class ProxyToolExecutor:
    """Runs tools through the tool proxy: ``{toolName, args}`` in, tool result out."""

    def __init__(self, endpoint: str, http_client: httpx.AsyncClient | None = None, timeout: float = config.REQUEST_TIMEOUT_S):
        self.endpoint = endpoint
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def execute(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._http_client.post(self.endpoint, json={"toolName": name, "args": args})
        except httpx.RequestError as e:
            logger.error("tool-proxy: request error running %s: %s", name, e)
            raise ToolFailure("Tool execution failed.") from e

        if response.is_error:
            logger.error("tool-proxy: HTTP %s running %s", response.status_code, name)
            raise ToolFailure("Tool execution failed.")

        try:
            result = response.json()
        except ValueError as e:
            raise ToolFailure("Tool returned malformed JSON.") from e

        return _check_tool_result(name, result)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()


class LocalToolExecutor:
    """Runs tools in-process from a :class:`ToolRegistry`."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        try:
            result = await self.registry.execute(name, args)
        except Exception as e:
            logger.error("Tool %s raised", name, exc_info=True)
            raise ToolFailure(f"Tool {name} failed: {e}") from e
        return _check_tool_result(name, result)

    async def aclose(self) -> None:
        await self.registry.aclose()


def _check_tool_result(name: str, result: Any) -> dict[str, Any]:
    if not isinstance(result, dict):
        raise ToolFailure(f"Tool {name} returned an unexpected result.")
    if "error" in result:
        raise ToolFailure(str(result["error"]))
    return result
