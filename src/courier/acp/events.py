"""Normalized runtime events emitted by an ACP backend turn."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Literal

SessionUpdateTag = Literal[
    "agent_message_chunk",
    "agent_thought_chunk",
    "tool_call",
    "tool_call_update",
    "usage_update",
    "available_commands_update",
    "current_mode_update",
    "config_option_update",
    "session_info_update",
    "plan",
]

SESSION_UPDATE_TAGS: tuple[str, ...] = (
    "agent_message_chunk",
    "agent_thought_chunk",
    "tool_call",
    "tool_call_update",
    "usage_update",
    "available_commands_update",
    "current_mode_update",
    "config_option_update",
    "session_info_update",
    "plan",
)

TextStream = Literal["output", "thought"]


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class TextDelta:
    """A chunk of assistant output or reasoning text."""

    type: ClassVar[str] = "text_delta"

    text: str
    stream: TextStream = "output"
    tag: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact({"type": self.type, "text": self.text, "stream": self.stream, "tag": self.tag})


@dataclass(frozen=True)
class ToolCallEvent:
    """Lifecycle line for one tool invocation."""

    type: ClassVar[str] = "tool_call"

    text: str
    tag: str
    title: str = "tool call"
    tool_call_id: str | None = None
    status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "type": self.type,
                "text": self.text,
                "tag": self.tag,
                "toolCallId": self.tool_call_id,
                "status": self.status,
                "title": self.title,
            }
        )


@dataclass(frozen=True)
class StatusEvent:
    """Out-of-band session status; ``tag`` is None for opaque runtime lines."""

    type: ClassVar[str] = "status"

    text: str
    tag: str | None = None
    used: int | float | None = None
    size: int | float | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {"type": self.type, "text": self.text, "tag": self.tag, "used": self.used, "size": self.size}
        )


@dataclass(frozen=True)
class DoneEvent:
    type: ClassVar[str] = "done"

    stop_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact({"type": self.type, "stopReason": self.stop_reason})


@dataclass(frozen=True)
class ErrorEvent:
    type: ClassVar[str] = "error"

    message: str
    code: str | None = None
    retryable: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {"type": self.type, "message": self.message, "code": self.code, "retryable": self.retryable}
        )


RuntimeEvent = TextDelta | ToolCallEvent | StatusEvent | DoneEvent | ErrorEvent

RUNTIME_EVENT_TYPES: frozenset[str] = frozenset({"text_delta", "tool_call", "status", "done", "error"})
