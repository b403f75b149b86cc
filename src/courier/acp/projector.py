"""Project backend protocol lines into normalized runtime events.

The backend speaks newline-delimited JSON. A line is either a JSON-RPC
``session/update`` notification wrapping an ``update`` object, a flat object
carrying ``sessionUpdate``, or a legacy flat ``{"type": ..., "tag": ...}``
record. Every function here is pure: no I/O, no state.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from courier.acp.events import (
    RUNTIME_EVENT_TYPES,
    DoneEvent,
    ErrorEvent,
    RuntimeEvent,
    StatusEvent,
    TextDelta,
    ToolCallEvent,
)

DEFAULT_TOOL_TITLE = "tool call"
DEFAULT_RUNTIME_ERROR = "runtime error"
DEFAULT_CONTROL_ERROR = "runtime reported an error"

_STATUS_TAGS = frozenset(
    {
        "available_commands_update",
        "current_mode_update",
        "config_option_update",
        "session_info_update",
        "plan",
    }
)


@dataclass(frozen=True)
class AcpxErrorInfo:
    """Error details reported by a control command or a terminal error record."""

    message: str
    code: str | None = None
    retryable: bool | None = None


def _reject_constant(token: str) -> Any:
    raise ValueError(f"invalid JSON constant: {token}")


def _loads_strict(text: str) -> Any:
    # NaN and Infinity are not JSON.
    return json.loads(text, parse_constant=_reject_constant)


def _trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _optional_str(value: Any) -> str | None:
    return _trimmed(value) or None


def _optional_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def _finite_number(value: Any) -> int | float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _format_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _resolve_payload(parsed: Mapping[str, Any]) -> tuple[str, Mapping[str, Any], str | None]:
    """Return ``(type, payload, tag)`` for one structured record."""
    if _trimmed(parsed.get("method")) == "session/update":
        params = parsed.get("params")
        if isinstance(params, Mapping) and isinstance(params.get("update"), Mapping):
            update = params["update"]
            tag = _optional_str(update.get("sessionUpdate"))
            return tag or "", update, tag

    session_update = _optional_str(parsed.get("sessionUpdate"))
    if session_update:
        return session_update, parsed, session_update

    return _trimmed(parsed.get("type")), parsed, _optional_str(parsed.get("tag"))


def _status_text_for_tag(tag: str, payload: Mapping[str, Any]) -> str | None:
    if tag == "available_commands_update":
        commands = payload.get("availableCommands")
        count = len(commands) if isinstance(commands, list) else 0
        return f"available commands updated ({count})" if count else "available commands updated"

    if tag == "current_mode_update":
        mode = (
            _trimmed(payload.get("currentModeId"))
            or _trimmed(payload.get("modeId"))
            or _trimmed(payload.get("mode"))
        )
        return f"mode updated: {mode}" if mode else "mode updated"

    if tag == "config_option_update":
        option_id = _trimmed(payload.get("id")) or _trimmed(payload.get("configOptionId"))
        value = (
            _trimmed(payload.get("currentValue"))
            or _trimmed(payload.get("value"))
            or _trimmed(payload.get("optionValue"))
        )
        if option_id and value:
            return f"config updated: {option_id}={value}"
        if option_id:
            return f"config updated: {option_id}"
        return "config updated"

    if tag == "session_info_update":
        return _trimmed(payload.get("summary")) or _trimmed(payload.get("message")) or "session updated"

    if tag == "plan":
        entries = payload.get("entries")
        if not isinstance(entries, list):
            return None
        first = next((entry for entry in entries if isinstance(entry, Mapping)), None)
        content = _trimmed(first.get("content")) if first is not None else ""
        return f"plan: {content}" if content else None

    return None


def _text_chunk(payload: Mapping[str, Any], stream: str, tag: str) -> TextDelta | None:
    content = payload.get("content")
    if isinstance(content, Mapping):
        content_type = _trimmed(content.get("type"))
        if content_type and content_type != "text":
            return None
        text = content.get("text")
        if isinstance(text, str) and text:
            return TextDelta(text=text, stream=stream, tag=tag)

    text = payload.get("text")
    if not isinstance(text, str) or not text:
        return None
    return TextDelta(text=text, stream=stream, tag=tag)


def _tool_call(payload: Mapping[str, Any], tag: str) -> ToolCallEvent:
    title = _trimmed(payload.get("title")) or DEFAULT_TOOL_TITLE
    status = _optional_str(payload.get("status"))
    return ToolCallEvent(
        text=f"{title} ({status})" if status else title,
        tag=tag,
        title=title,
        tool_call_id=_optional_str(payload.get("toolCallId")),
        status=status,
    )


def project_prompt_payload(parsed: Mapping[str, Any]) -> RuntimeEvent | None:
    """Map one structured protocol record to a runtime event, or None to drop it."""
    event_type, payload, tag = _resolve_payload(parsed)

    if event_type in ("text", "thought"):
        content = payload.get("content")
        if not isinstance(content, str) or not content:
            return None
        return TextDelta(text=content, stream="output" if event_type == "text" else "thought", tag=tag)

    if event_type == "agent_message_chunk":
        return _text_chunk(payload, "output", "agent_message_chunk")

    if event_type == "agent_thought_chunk":
        return _text_chunk(payload, "thought", "agent_thought_chunk")

    if event_type in ("tool_call", "tool_call_update"):
        return _tool_call(payload, tag or event_type)

    if event_type == "usage_update":
        used = _finite_number(payload.get("used"))
        size = _finite_number(payload.get("size"))
        if used is not None and size is not None:
            text = f"usage updated: {_format_number(used)}/{_format_number(size)}"
        else:
            text = "usage updated"
        return StatusEvent(text=text, tag="usage_update", used=used, size=size)

    if event_type in _STATUS_TAGS:
        text = _status_text_for_tag(event_type, payload)
        if not text:
            return None
        return StatusEvent(text=text, tag=event_type)

    if event_type == "client_operation":
        parts = (
            _trimmed(payload.get("method")),
            _trimmed(payload.get("status")),
            _trimmed(payload.get("summary")),
        )
        text = " ".join(part for part in parts if part)
        if not text:
            return None
        return StatusEvent(text=text, tag=tag)

    if event_type == "update":
        update = _trimmed(payload.get("update"))
        if not update:
            return None
        return StatusEvent(text=update, tag=tag)

    if event_type == "done":
        return DoneEvent(stop_reason=_optional_str(payload.get("stopReason")))

    if event_type == "error":
        return ErrorEvent(
            message=_trimmed(payload.get("message")) or DEFAULT_RUNTIME_ERROR,
            code=_optional_str(payload.get("code")),
            retryable=_optional_bool(payload.get("retryable")),
        )

    # Unknown types are protocol additions this version does not render.
    return None


def parse_prompt_event_line(line: str) -> RuntimeEvent | None:
    """Parse one newline-delimited protocol line.

    Lines that are not JSON degrade to an opaque status event carrying the
    trimmed text, so runtime diagnostics are never lost.
    """
    trimmed = line.strip()
    if not trimmed:
        return None
    try:
        parsed = _loads_strict(trimmed)
    except ValueError:
        return StatusEvent(text=trimmed)

    if not isinstance(parsed, dict):
        return None
    return project_prompt_payload(parsed)


def _normalized_from_mapping(raw: Mapping[str, Any]) -> RuntimeEvent | None:
    event_type = raw.get("type")
    tag = _optional_str(raw.get("tag"))

    if event_type == "text_delta":
        text = raw.get("text")
        if not isinstance(text, str) or not text:
            return None
        stream = "thought" if raw.get("stream") == "thought" else "output"
        return TextDelta(text=text, stream=stream, tag=tag)

    if event_type == "tool_call":
        title = _trimmed(raw.get("title")) or DEFAULT_TOOL_TITLE
        status = _optional_str(raw.get("status"))
        text = _trimmed(raw.get("text")) or (f"{title} ({status})" if status else title)
        return ToolCallEvent(
            text=text,
            tag=tag or "tool_call",
            title=title,
            tool_call_id=_optional_str(raw.get("toolCallId")),
            status=status,
        )

    if event_type == "status":
        text = _trimmed(raw.get("text"))
        if not text:
            return None
        return StatusEvent(
            text=text,
            tag=tag,
            used=_finite_number(raw.get("used")),
            size=_finite_number(raw.get("size")),
        )

    return project_prompt_payload(raw)


def coerce_runtime_event(raw: Any) -> RuntimeEvent | None:
    """Accept a runtime event, a protocol line, or a protocol/normalized mapping."""
    if isinstance(raw, (TextDelta, ToolCallEvent, StatusEvent, DoneEvent, ErrorEvent)):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        return parse_prompt_event_line(raw)
    if isinstance(raw, Mapping):
        if raw.get("type") in RUNTIME_EVENT_TYPES:
            return _normalized_from_mapping(raw)
        return project_prompt_payload(raw)
    return None


def parse_json_lines(value: str) -> list[dict[str, Any]]:
    """Parse newline-delimited JSON objects, skipping malformed lines."""
    records: list[dict[str, Any]] = []
    for line in value.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        try:
            parsed = _loads_strict(trimmed)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            records.append(parsed)
    return records


def _is_jsonrpc_id(value: Any) -> bool:
    if value is None or isinstance(value, str):
        return True
    return _finite_number(value) is not None


def is_acp_jsonrpc_message(value: Any) -> bool:
    """True when ``value`` is a well-formed JSON-RPC 2.0 request, notification or response."""
    if not isinstance(value, Mapping) or value.get("jsonrpc") != "2.0":
        return False

    method = value.get("method")
    has_method = isinstance(method, str) and len(method) > 0
    has_id = "id" in value

    if has_method and not has_id:
        return True
    if has_method and has_id:
        return _is_jsonrpc_id(value["id"])
    if has_id:
        return _is_jsonrpc_id(value["id"]) and (("result" in value) != ("error" in value))
    return False


def normalize_jsonrpc_id(value: Any) -> str | None:
    if value is None or not _is_jsonrpc_id(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_control_json_error(value: Any) -> AcpxErrorInfo | None:
    """Read ``{"error": {...}}`` payloads printed by backend control commands."""
    if not isinstance(value, Mapping):
        return None
    error = value.get("error")
    if not isinstance(error, Mapping):
        return None
    code = error.get("code")
    number = _finite_number(code)
    return AcpxErrorInfo(
        message=_trimmed(error.get("message")) or DEFAULT_CONTROL_ERROR,
        code=_format_number(number) if number is not None else _optional_str(code),
        retryable=_optional_bool(error.get("retryable")),
    )


def to_error_event(value: Any) -> ErrorEvent | None:
    """Convert a flat ``{"type": "error"}`` record to an error event."""
    if not isinstance(value, Mapping) or _trimmed(value.get("type")) != "error":
        return None
    return ErrorEvent(
        message=_trimmed(value.get("message")) or DEFAULT_CONTROL_ERROR,
        code=_optional_str(value.get("code")),
        retryable=_optional_bool(value.get("retryable")),
    )
