from __future__ import annotations

from courier.acp.events import StatusEvent, TextDelta, ToolCallEvent
from courier.config import AcpStreamConfig
from courier.reply.stream import TRUNCATION_NOTICE, AcpReplyProjection, truncate_line


def _projection(**stream: object) -> AcpReplyProjection:
    return AcpReplyProjection(AcpStreamConfig(**stream))


def test_default_visibility() -> None:
    projection = _projection()

    assert projection.is_tag_visible("agent_message_chunk") is True
    assert projection.is_tag_visible("tool_call") is False
    assert projection.is_tag_visible("usage_update") is False
    assert projection.is_tag_visible(None) is False
    assert projection.is_tag_visible("something_new") is False


def test_visibility_overrides() -> None:
    projection = _projection(tag_visibility={"usage_update": True, "agent_message_chunk": False})

    assert projection.is_tag_visible("usage_update") is True
    assert projection.on_text(TextDelta(text="hidden", tag="agent_message_chunk")) is None
    assert projection.hidden_events == 1


def test_output_text_becomes_block_and_thought_is_dropped() -> None:
    projection = _projection()

    planned = projection.on_text(TextDelta(text="hello", tag="agent_message_chunk"))

    assert planned.kind == "block"
    assert planned.payload.text == "hello"
    assert projection.on_text(TextDelta(text="hmm", stream="thought")) is None


def test_visible_tool_calls_carry_edit_hints() -> None:
    projection = _projection(tag_visibility={"tool_call": True, "tool_call_update": True})

    first = projection.on_tool_call(ToolCallEvent(text="Run (pending)", tag="tool_call", tool_call_id="c1"))
    update = projection.on_tool_call(ToolCallEvent(text="Run (completed)", tag="tool_call_update", tool_call_id="c1"))
    orphan = projection.on_tool_call(ToolCallEvent(text="Other (completed)", tag="tool_call_update", tool_call_id="c2"))

    assert first.kind == "tool"
    assert first.meta.tool_call_id == "c1"
    assert first.meta.allow_edit is False
    assert update.meta.allow_edit is True
    assert orphan.meta.allow_edit is False


def test_tool_summaries_can_be_disabled() -> None:
    projection = AcpReplyProjection(
        AcpStreamConfig(tag_visibility={"tool_call": True}),
        send_tool_summaries=False,
    )

    assert projection.on_tool_call(ToolCallEvent(text="Run", tag="tool_call")) is None


def test_repeat_suppression() -> None:
    projection = _projection(tag_visibility={"tool_call_update": True, "usage_update": True})
    event = ToolCallEvent(text="Run (in_progress)", tag="tool_call_update", tool_call_id="c1")

    assert projection.on_tool_call(event) is not None
    assert projection.on_tool_call(event) is None
    assert projection.on_status(StatusEvent(text="usage updated: 1/2", tag="usage_update")) is not None
    assert projection.on_status(StatusEvent(text="usage updated: 1/2", tag="usage_update")) is None
    assert projection.on_status(StatusEvent(text="usage updated: 2/2", tag="usage_update")) is not None


def test_repeat_suppression_off() -> None:
    projection = _projection(repeat_suppression=False, tag_visibility={"usage_update": True})
    event = StatusEvent(text="usage updated: 1/2", tag="usage_update")

    assert projection.on_status(event) is not None
    assert projection.on_status(event) is not None


def test_status_lines_are_truncated() -> None:
    projection = _projection(max_session_update_chars=20, tag_visibility={"plan": True})

    planned = projection.on_status(StatusEvent(text="plan: " + "x" * 50, tag="plan"))

    assert len(planned.payload.text) == 20
    assert planned.payload.text.endswith("…")
    assert planned.kind == "tool"


def test_truncate_line_collapses_whitespace() -> None:
    assert truncate_line("a\n  b\tc", 10) == "a b c"


def test_output_cap_appends_single_notice() -> None:
    projection = _projection(max_output_chars=5)

    first = projection.on_text(TextDelta(text="abc"))
    second = projection.on_text(TextDelta(text="defgh"))
    third = projection.on_text(TextDelta(text="more"))

    assert first.payload.text == "abc"
    assert second.payload.text == f"de\n{TRUNCATION_NOTICE}"
    assert third is None
    assert projection.truncated is True


def test_final_only_buffers_with_boundary_separator() -> None:
    projection = _projection(delivery_mode="final_only", hidden_boundary_separator="space")

    assert projection.on_text(TextDelta(text="a")) is None
    assert projection.on_status(StatusEvent(text="usage updated", tag="usage_update")) is None
    assert projection.on_text(TextDelta(text="b")) is None
    assert projection.buffered_text == "a b"

    flushed = projection.flush_final()

    assert flushed.kind == "final"
    assert flushed.payload.text == "a b"
    assert projection.flush_final() is None


def test_live_mode_ignores_boundaries() -> None:
    projection = _projection()

    projection.on_status(StatusEvent(text="usage updated", tag="usage_update"))
    planned = projection.on_text(TextDelta(text="b"))

    assert planned.payload.text == "b"
    assert projection.flush_final() is None
