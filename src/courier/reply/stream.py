"""Projection of normalized ACP events into planned chat deliveries."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from courier.acp.events import StatusEvent, TextDelta, ToolCallEvent
from courier.config import AcpStreamConfig
from courier.reply.delivery import DeliveryMeta
from courier.reply.payload import ReplyDispatchKind, ReplyPayload

logger = structlog.get_logger()

UNTAGGED_STATUS_KEY = "status"
TRUNCATION_NOTICE = "[output truncated]"

DEFAULT_TAG_VISIBILITY: dict[str, bool] = {
    "agent_message_chunk": True,
    "tool_call": False,
    "tool_call_update": False,
    "usage_update": False,
    "available_commands_update": False,
    "current_mode_update": False,
    "config_option_update": False,
    "session_info_update": False,
    "plan": False,
    UNTAGGED_STATUS_KEY: False,
}

BOUNDARY_SEPARATORS: dict[str, str] = {
    "none": "",
    "space": " ",
    "newline": "\n",
    "paragraph": "\n\n",
}


@dataclass(frozen=True)
class PlannedDelivery:
    kind: ReplyDispatchKind
    payload: ReplyPayload
    meta: DeliveryMeta = field(default_factory=DeliveryMeta)


def truncate_line(text: str, limit: int) -> str:
    compact = " ".join(text.split())
    if len(compact) <= limit:
        return compact
    return compact[: max(0, limit - 1)].rstrip() + "…"


class AcpReplyProjection:
    """Decides which events of one turn become deliveries, and how.

    Output text is delivered as ``block`` replies in live mode or buffered
    until ``flush_final`` in ``final_only`` mode. Tool and status lines become
    ``tool`` replies when their tag is visible. One instance per turn.
    """

    def __init__(self, stream: AcpStreamConfig, *, send_tool_summaries: bool = True) -> None:
        self.stream = stream
        self.send_tool_summaries = send_tool_summaries
        self.output_chars = 0
        self.truncated = False
        self.hidden_events = 0
        self._final_buffer = ""
        self._pending_boundary = False
        self._last_line_by_key: dict[str, str] = {}
        self._seen_tool_calls: set[str] = set()

    def is_tag_visible(self, tag: str | None) -> bool:
        key = (tag or "").strip() or UNTAGGED_STATUS_KEY
        if key in self.stream.tag_visibility:
            return self.stream.tag_visibility[key]
        return DEFAULT_TAG_VISIBILITY.get(key, False)

    @property
    def buffered_text(self) -> str:
        return self._final_buffer

    def on_text(self, event: TextDelta) -> PlannedDelivery | None:
        if event.stream != "output":
            return None
        if event.tag and not self.is_tag_visible(event.tag):
            self._mark_hidden()
            return None

        text = self._cap_output(event.text)
        if not text:
            return None

        if self.stream.delivery_mode == "final_only":
            if self._pending_boundary and self._final_buffer:
                self._final_buffer += BOUNDARY_SEPARATORS[self.stream.hidden_boundary_separator]
            self._pending_boundary = False
            self._final_buffer += text
            return None

        self._pending_boundary = False
        return PlannedDelivery(kind="block", payload=ReplyPayload(text=text))

    def on_tool_call(self, event: ToolCallEvent) -> PlannedDelivery | None:
        if not self.send_tool_summaries or not self.is_tag_visible(event.tag):
            self._mark_hidden()
            return None

        tool_call_id = (event.tool_call_id or "").strip() or None
        text = truncate_line(event.text, self.stream.max_session_update_chars)
        if self._is_repeat(tool_call_id or event.tag, text):
            return None

        allow_edit = bool(
            tool_call_id and event.tag == "tool_call_update" and tool_call_id in self._seen_tool_calls
        )
        if tool_call_id:
            self._seen_tool_calls.add(tool_call_id)
        return PlannedDelivery(
            kind="tool",
            payload=ReplyPayload(text=text),
            meta=DeliveryMeta(tool_call_id=tool_call_id, allow_edit=allow_edit),
        )

    def on_status(self, event: StatusEvent) -> PlannedDelivery | None:
        if not event.tag:
            logger.debug("acp.stream.status", text=event.text[:240])
        if not self.send_tool_summaries or not self.is_tag_visible(event.tag):
            self._mark_hidden()
            return None

        text = truncate_line(event.text, self.stream.max_session_update_chars)
        if not text or self._is_repeat(event.tag or UNTAGGED_STATUS_KEY, text):
            return None
        return PlannedDelivery(kind="tool", payload=ReplyPayload(text=text))

    def flush_final(self) -> PlannedDelivery | None:
        """Release text buffered in ``final_only`` mode as one final reply."""
        text = self._final_buffer
        self._final_buffer = ""
        self._pending_boundary = False
        if not text.strip():
            return None
        return PlannedDelivery(kind="final", payload=ReplyPayload(text=text))

    def _mark_hidden(self) -> None:
        self.hidden_events += 1
        self._pending_boundary = True

    def _is_repeat(self, key: str, text: str) -> bool:
        if not self.stream.repeat_suppression:
            return False
        if self._last_line_by_key.get(key) == text:
            return True
        self._last_line_by_key[key] = text
        return False

    def _cap_output(self, text: str) -> str:
        if self.truncated or not text:
            return ""
        remaining = self.stream.max_output_chars - self.output_chars
        if len(text) <= remaining:
            self.output_chars += len(text)
            return text
        self.truncated = True
        self.output_chars = self.stream.max_output_chars
        logger.info("acp.stream.output_truncated", limit=self.stream.max_output_chars)
        kept = text[: max(0, remaining)]
        return f"{kept}\n{TRUNCATION_NOTICE}" if kept else TRUNCATION_NOTICE
