"""Data models for conversations and the Gemini-style message wire format."""

from __future__ import annotations

import time
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_TITLE

Role = Literal["user", "model", "tool"]


class _WireModel(BaseModel):
    # Accept both the camelCase wire keys and the Python field names
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class TextPart(_WireModel):
    text: str


class FunctionCall(_WireModel):
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class FunctionCallPart(_WireModel):
    function_call: FunctionCall = Field(alias="functionCall")


class FunctionResponse(_WireModel):
    name: str
    response: dict[str, Any]


class FunctionResponsePart(_WireModel):
    function_response: FunctionResponse = Field(alias="functionResponse")


Part = Union[TextPart, FunctionCallPart, FunctionResponsePart]


class Message(_WireModel):
    role: Role
    parts: list[Part] = Field(min_length=1)

    @classmethod
    def user_text(cls, text: str) -> Message:
        return cls(role="user", parts=[TextPart(text=text)])

    @classmethod
    def model_text(cls, text: str) -> Message:
        return cls(role="model", parts=[TextPart(text=text)])

    @classmethod
    def tool_result(cls, name: str, response: dict[str, Any]) -> Message:
        return cls(
            role="tool",
            parts=[FunctionResponsePart(function_response=FunctionResponse(name=name, response=response))],
        )

    @property
    def first_part(self) -> Part:
        """Only the first part of a message is ever interpreted."""
        return self.parts[0]

    @property
    def text(self) -> str | None:
        part = self.first_part
        return part.text if isinstance(part, TextPart) else None

    @property
    def function_call(self) -> FunctionCall | None:
        part = self.first_part
        return part.function_call if isinstance(part, FunctionCallPart) else None

    @property
    def function_response(self) -> FunctionResponse | None:
        part = self.first_part
        return part.function_response if isinstance(part, FunctionResponsePart) else None


class Conversation(_WireModel):
    id: str
    title: str = DEFAULT_TITLE
    created_at: float = Field(default_factory=time.time)
    messages: list[Message] = Field(default_factory=list)

    @property
    def user_message_count(self) -> int:
        return sum(1 for m in self.messages if m.role == "user")
