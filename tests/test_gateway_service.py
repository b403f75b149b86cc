from __future__ import annotations

import json
from typing import Any

import pytest

from courier.acp.errors import ACP_DISPATCH_DISABLED, ACP_SESSION_LIMIT, ACP_TURN_TIMEOUT, AcpRuntimeError
from courier.acp.runtime import JsonlReplayRuntime
from courier.acp.session import AcpSessionManager
from courier.channels.base import SentMessage
from courier.config import AcpConfig, AcpDispatchConfig, CourierConfig
from courier.gateway import CourierGateway, InboundEvent, ReplyRouter
from courier.gateway.service import parse_command


def _chunk(text: str) -> str:
    return json.dumps(
        {
            "jsonrpc": "2.0",
            "method": "session/update",
            "params": {
                "sessionId": "s-1",
                "update": {"sessionUpdate": "agent_message_chunk", "content": {"type": "text", "text": text}},
            },
        }
    )


_DONE = '{"type": "done", "stopReason": "end_turn"}'


class _FailingRuntime:
    backend = "fake"

    def is_healthy(self) -> bool:
        return True

    async def run_turn(self, *, session, prompt: str, on_event) -> None:
        raise AcpRuntimeError(ACP_TURN_TIMEOUT, "ACP turn timed out after 1s.")


class _FakeProvider:
    name = "telegram"
    supports_edit = True

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.typing: list[str] = []

    async def send_message(self, to: str, text: str, **kwargs: Any) -> SentMessage:
        self.sent.append((to, text))
        return SentMessage(channel="telegram", to=to, message_id=str(len(self.sent)))

    async def edit_message(self, to: str, message_id: str, text: str, **kwargs: Any) -> None:
        return None

    async def send_typing(self, to: str, *, thread_id: str | None = None) -> None:
        self.typing.append(to)


class _FakeChannelManager:
    def __init__(self, provider: _FakeProvider) -> None:
        self.provider = provider

    def get(self, channel: str) -> _FakeProvider | None:
        return self.provider if channel == "telegram" else None


def _gateway(runtime, *, config: CourierConfig | None = None, provider: _FakeProvider | None = None) -> CourierGateway:
    config = config or CourierConfig()
    channel_manager = _FakeChannelManager(provider) if provider is not None else None
    return CourierGateway(
        config=config,
        session_manager=AcpSessionManager(config.acp, runtime),
        reply_router=ReplyRouter(channel_manager=channel_manager),
        channel_manager=channel_manager,
    )


def _event(text: str, **kwargs: Any) -> InboundEvent:
    return InboundEvent(channel="api", session_key="api:test", sender_id="u1", peer_id="u1", text=text, **kwargs)


def test_parse_command() -> None:
    assert parse_command("/reset") == "/reset"
    assert parse_command("  /STATUS please") == "/status"
    assert parse_command("/close@courier_bot") == "/close"
    assert parse_command("/unknown") is None
    assert parse_command("reset") is None
    assert parse_command("") is None


@pytest.mark.asyncio
async def test_turn_replies_are_collected() -> None:
    gateway = _gateway(JsonlReplayRuntime([_chunk("Hello"), _chunk(" world"), _DONE]))

    result = await gateway.handle_event(_event("hi"))

    assert result.handled is True
    assert result.stop_reason == "end_turn"
    assert result.counts == {"tool": 0, "block": 2, "final": 0}
    assert result.response_text == "Hello world"
    assert "api:test" in gateway.session_manager.sessions()


@pytest.mark.asyncio
async def test_routed_turn_goes_to_originating_chat() -> None:
    provider = _FakeProvider()
    gateway = _gateway(JsonlReplayRuntime([_chunk("Hello"), _DONE]), provider=provider)

    result = await gateway.handle_event(
        _event("hi", originating_channel="telegram", originating_to="42")
    )

    assert provider.sent == [("42", "Hello")]
    assert provider.typing == ["42"]
    assert result.replies == []
    assert result.routed_to_originating is True
    assert result.counts["block"] == 1


@pytest.mark.asyncio
async def test_runtime_failure_becomes_error_reply() -> None:
    gateway = _gateway(_FailingRuntime())

    result = await gateway.handle_event(_event("hi"))

    assert result.error_code == ACP_TURN_TIMEOUT
    assert len(result.replies) == 1
    reply = result.replies[0]
    assert reply.kind == "final"
    assert reply.payload.is_error is True
    assert reply.payload.text == "ACP error (ACP_TURN_TIMEOUT): ACP turn timed out after 1s."
    assert gateway.session_manager.sessions()["api:test"].state == "error"


@pytest.mark.asyncio
async def test_reset_command_recovers_failed_session() -> None:
    gateway = _gateway(_FailingRuntime())
    await gateway.handle_event(_event("hi"))

    reset = await gateway.handle_event(_event("/reset"))
    status = await gateway.handle_event(_event("/status"))

    assert reset.handled is True
    assert reset.response_text == "ACP session reset."
    assert status.response_text.startswith("agent=codex state=idle")


@pytest.mark.asyncio
async def test_commands_without_session() -> None:
    gateway = _gateway(JsonlReplayRuntime([_DONE]))

    result = await gateway.handle_event(_event("/close"))

    assert result.handled is True
    assert result.response_text == "No ACP session is bound to this chat."
    assert gateway.session_manager.sessions() == {}


@pytest.mark.asyncio
async def test_dispatch_disabled_is_reported() -> None:
    config = CourierConfig(acp=AcpConfig(dispatch=AcpDispatchConfig(enabled=False)))
    gateway = _gateway(JsonlReplayRuntime([_chunk("never"), _DONE]), config=config)

    result = await gateway.handle_event(_event("hi"))

    assert result.error_code == ACP_DISPATCH_DISABLED
    assert result.replies[0].payload.is_error is True
    assert gateway.session_manager.sessions() == {}


@pytest.mark.asyncio
async def test_replies_are_copied_to_output_target() -> None:
    provider = _FakeProvider()
    gateway = _gateway(JsonlReplayRuntime([_chunk("report"), _DONE]), provider=provider)

    result = await gateway.handle_event(_event("hi", output_target="telegram:99"))

    assert result.response_text == "report"
    assert provider.sent == [("99", "report")]


@pytest.mark.asyncio
async def test_session_limit_is_reported_with_its_own_code() -> None:
    config = CourierConfig(acp=AcpConfig(max_concurrent_sessions=1))
    gateway = _gateway(JsonlReplayRuntime([_chunk("pong"), _DONE]), config=config)
    gateway.session_manager.ensure_session("api:other")

    result = await gateway.handle_event(_event("hi"))

    assert result.handled is True
    assert result.error_code == ACP_SESSION_LIMIT
    assert len(result.replies) == 1
    reply = result.replies[0]
    assert reply.kind == "final"
    assert reply.payload.is_error is True
    assert reply.payload.text == "ACP error (ACP_SESSION_LIMIT): ACP session limit reached (1)."
    assert "api:test" not in gateway.session_manager.sessions()
