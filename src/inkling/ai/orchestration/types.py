"""Core type definitions for the agent loop.

All types are frozen so transcripts can be snapshotted by copying a tuple.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "Message",
    "MessageRole",
    "ToolCall",
]


def _utcnow() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Milliseconds since the epoch, as JavaScript clients send them.
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return _utcnow()


# -----------------------------------------------------------------------------
# Tool calls
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A structured model request to invoke one named tool.

    Attributes:
        id: Call identifier used to correlate the tool result.
        function_name: Requested tool name (untrusted).
        arguments: Arguments as a JSON string.
    """

    id: str
    function_name: str
    arguments: str = "{}"

    def to_chat_param(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.function_name, "arguments": self.arguments},
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ToolCall:
        """Accept both the OpenAI shape and the flat ``functionName`` shape."""

        function = payload.get("function")
        if isinstance(function, Mapping):
            name = function.get("name")
            arguments = function.get("arguments", "{}")
        else:
            name = payload.get("functionName") or payload.get("name")
            arguments = payload.get("arguments", "{}")
        call_id = payload.get("id")
        if not isinstance(call_id, str) or not call_id:
            raise ValueError("Tool call is missing an id")
        if not isinstance(name, str) or not name:
            raise ValueError(f"Tool call {call_id} is missing a function name")
        if isinstance(arguments, Mapping):
            arguments = json.dumps(dict(arguments))
        elif arguments is None:
            arguments = "{}"
        return cls(id=call_id, function_name=name, arguments=str(arguments))


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]
_ROLES = ("system", "user", "assistant", "tool")


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable conversation message.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        timestamp: When the message was created.
        is_update: Ephemeral scratch context rebuilt every cycle.
        name: Optional name for tool messages.
        tool_call_id: ID linking a tool result to its call.
        tool_calls: Tool calls made by the assistant.
        metadata: Additional metadata (not sent to the model).
    """

    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=_utcnow)
    is_update: bool = False
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name is not None:
            payload["name"] = self.name
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            payload["tool_calls"] = [call.to_chat_param() for call in self.tool_calls]
            if not self.content:
                payload["content"] = None
        return payload  # type: ignore[return-value]

    def to_wire(self) -> dict[str, Any]:
        """Chat param plus the ``timestamp``/``isUpdate`` fields the proxy expects."""
        payload = dict(self.to_chat_param())
        payload["timestamp"] = self.timestamp.isoformat()
        payload["isUpdate"] = self.is_update
        return payload

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any]) -> Message:
        """Parse a message returned by a model endpoint.

        Raises:
            ValueError: If the payload is not a usable message.
        """
        if not isinstance(payload, Mapping):
            raise ValueError("Message payload must be an object")
        role = payload.get("role", "assistant")
        if role not in _ROLES:
            raise ValueError(f"Unknown message role {role!r}")
        content = payload.get("content")
        if content is None:
            content = ""
        elif not isinstance(content, str):
            content = json.dumps(content) if isinstance(content, (list, dict)) else str(content)
        raw_calls = payload.get("tool_calls")
        tool_calls: tuple[ToolCall, ...] | None = None
        if raw_calls:
            if not isinstance(raw_calls, Sequence) or isinstance(raw_calls, (str, bytes)):
                raise ValueError("tool_calls must be a list")
            tool_calls = tuple(
                ToolCall.from_payload(call) for call in raw_calls if isinstance(call, Mapping)
            )
        return cls(
            role=role,  # type: ignore[arg-type]
            content=content,
            timestamp=_parse_timestamp(payload.get("timestamp")),
            is_update=bool(payload.get("isUpdate", False)),
            name=payload.get("name"),
            tool_call_id=payload.get("tool_call_id"),
            tool_calls=tool_calls or None,
        )

    @classmethod
    def system(cls, content: str, *, is_update: bool = False, **metadata: Any) -> Message:
        return cls(role="system", content=content, is_update=is_update, metadata=metadata)

    @classmethod
    def user(cls, content: str, *, is_update: bool = False, **metadata: Any) -> Message:
        return cls(role="user", content=content, is_update=is_update, metadata=metadata)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Sequence[ToolCall] | None = None,
        **metadata: Any,
    ) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
            metadata=metadata,
        )

    @classmethod
    def tool(
        cls,
        content: str,
        tool_call_id: str,
        name: str | None = None,
        **metadata: Any,
    ) -> Message:
        return cls(
            role="tool",
            content=content,
            tool_call_id=tool_call_id,
            name=name,
            metadata=metadata,
        )


# -----------------------------------------------------------------------------
# Endpoint request / response
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ChatRequest:
    """Everything one stateless model request carries."""

    messages: tuple[Message, ...]
    tools: tuple[Mapping[str, Any], ...] = ()
    model: str | None = None
    max_completion_tokens: int | None = None
    tool_choice: str = "auto"

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "messages": [message.to_wire() for message in self.messages],
            "tools": [dict(tool) for tool in self.tools],
            "tool_choice": self.tool_choice,
        }
        if self.model:
            payload["model"] = self.model
        if self.max_completion_tokens is not None:
            payload["max_completion_tokens"] = self.max_completion_tokens
        return payload


@dataclass(slots=True, frozen=True)
class ChatResponse:
    """Parsed model reply."""

    message: Message
    finish_reason: str | None = None
    model: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.message.tool_calls)
