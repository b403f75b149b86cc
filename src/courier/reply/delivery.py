"""Per-turn delivery coordinator for ACP replies.

Owns the bookkeeping of one turn (reply lifecycle latch, accumulated block
text, routed counters, tool message handles) and reconciles each delivery
against the chat platform: edit an existing tool message, route to the
originating channel, or hand off to the turn's dispatcher.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, MutableMapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from courier.config import CourierConfig
from courier.reply.dispatcher import ReplyDispatcher
from courier.reply.payload import (
    EditMessageParams,
    ReplyDispatchKind,
    ReplyPayload,
    RouteReplyResult,
    empty_counts,
    has_visible_content,
)
from courier.reply.tts import TtsSynthesizer, maybe_apply_tts_to_payload

logger = structlog.get_logger()

ReplyStartCallback = Callable[[], Awaitable[None] | None]


class RouteReply(Protocol):
    async def __call__(
        self,
        *,
        payload: ReplyPayload,
        channel: str,
        to: str,
        session_key: str,
        account_id: str | None = None,
        thread_id: str | None = None,
        cfg: Any = None,
    ) -> RouteReplyResult:
        ...


class RunMessageAction(Protocol):
    async def __call__(self, *, action: str, params: EditMessageParams, session_key: str) -> Any:
        ...


@dataclass(frozen=True)
class DispatchContext:
    """The inbound message that triggered a turn."""

    session_key: str
    channel: str
    prompt: str
    to: str | None = None
    sender_id: str | None = None
    account_id: str | None = None
    thread_id: str | None = None


@dataclass(frozen=True)
class DeliveryMeta:
    tool_call_id: str | None = None
    allow_edit: bool = False


@dataclass(frozen=True)
class ToolMessageHandle:
    channel: str
    to: str
    message_id: str
    account_id: str | None = None
    thread_id: str | None = None


@dataclass
class DeliveryState:
    started_reply_lifecycle: bool = False
    accumulated_block_text: str = ""
    block_count: int = 0
    routed_counts: dict[ReplyDispatchKind, int] = field(default_factory=empty_counts)
    tool_message_by_call_id: dict[str, ToolMessageHandle] = field(default_factory=dict)


class AcpDeliveryCoordinator:
    def __init__(
        self,
        *,
        cfg: CourierConfig,
        ctx: DispatchContext,
        dispatcher: ReplyDispatcher,
        inbound_audio: bool = False,
        session_tts_auto: str | None = None,
        tts_channel: str | None = None,
        should_route_to_originating: bool = False,
        originating_channel: str | None = None,
        originating_to: str | None = None,
        on_reply_start: ReplyStartCallback | None = None,
        route_reply: RouteReply | None = None,
        run_message_action: RunMessageAction | None = None,
        tts_synthesizer: TtsSynthesizer | None = None,
    ) -> None:
        self.cfg = cfg
        self.ctx = ctx
        self.dispatcher = dispatcher
        self.inbound_audio = inbound_audio
        self.session_tts_auto = session_tts_auto
        self.tts_channel = tts_channel
        self.should_route_to_originating = should_route_to_originating
        self.originating_channel = originating_channel
        self.originating_to = originating_to
        self.on_reply_start = on_reply_start
        self.route_reply = route_reply
        self.run_message_action = run_message_action
        self.tts_synthesizer = tts_synthesizer
        self._state = DeliveryState()

    @property
    def routes_to_originating(self) -> bool:
        return bool(
            self.should_route_to_originating
            and self.originating_channel
            and self.originating_to
            and self.route_reply is not None
        )

    @property
    def block_count(self) -> int:
        return self._state.block_count

    @property
    def accumulated_block_text(self) -> str:
        return self._state.accumulated_block_text

    @property
    def reply_lifecycle_started(self) -> bool:
        return self._state.started_reply_lifecycle

    def get_routed_counts(self) -> dict[ReplyDispatchKind, int]:
        return dict(self._state.routed_counts)

    def apply_routed_counts(self, counts: MutableMapping[ReplyDispatchKind, int]) -> None:
        for kind, value in self._state.routed_counts.items():
            counts[kind] = counts.get(kind, 0) + value

    async def start_reply_lifecycle(self) -> None:
        """Fire ``on_reply_start`` at most once per turn."""
        if self._state.started_reply_lifecycle:
            return
        # Latch before awaiting so overlapping callers cannot fire twice.
        self._state.started_reply_lifecycle = True
        if self.on_reply_start is None:
            return
        try:
            result = self.on_reply_start()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning("acp.delivery.reply_start_failed", error=str(exc))

    async def deliver(
        self,
        kind: ReplyDispatchKind,
        payload: ReplyPayload,
        meta: DeliveryMeta | None = None,
    ) -> bool:
        """Deliver one payload; returns False when a sink rejected it, never raises for sink errors."""
        meta = meta or DeliveryMeta()

        if kind == "block" and payload.text and payload.text.strip():
            if self._state.accumulated_block_text:
                self._state.accumulated_block_text += "\n"
            self._state.accumulated_block_text += payload.text
            self._state.block_count += 1

        if has_visible_content(payload):
            await self.start_reply_lifecycle()

        tts_payload = await maybe_apply_tts_to_payload(
            payload=payload,
            cfg=self.cfg,
            kind=kind,
            inbound_audio=self.inbound_audio,
            channel=self.tts_channel,
            tts_auto=self.session_tts_auto,
            synthesizer=self.tts_synthesizer,
        )

        if self.routes_to_originating:
            tool_call_id = (meta.tool_call_id or "").strip()
            if kind == "tool" and meta.allow_edit and tool_call_id:
                # A False here means "edit not applicable"; the caller decides whether to resend.
                return await self.try_edit_tool_message(tts_payload, tool_call_id)
            return await self._route(kind, tts_payload, tool_call_id or None)

        return self._dispatch_direct(kind, tts_payload)

    async def try_edit_tool_message(self, payload: ReplyPayload, tool_call_id: str) -> bool:
        if not self.routes_to_originating or self.run_message_action is None:
            return False
        handle = self._state.tool_message_by_call_id.get(tool_call_id)
        if handle is None or not handle.message_id:
            return False
        message = (payload.text or "").strip()
        if not message:
            return False

        try:
            await self.run_message_action(
                action="edit",
                params=EditMessageParams(
                    channel=handle.channel,
                    to=handle.to,
                    message_id=handle.message_id,
                    message=message,
                    account_id=handle.account_id,
                    thread_id=handle.thread_id,
                ),
                session_key=self.ctx.session_key,
            )
        except Exception as exc:
            logger.info(
                "acp.delivery.tool_edit_failed",
                tool_call_id=tool_call_id,
                message_id=handle.message_id,
                error=str(exc),
            )
            return False

        self._state.routed_counts["tool"] += 1
        return True

    async def _route(self, kind: ReplyDispatchKind, payload: ReplyPayload, tool_call_id: str | None) -> bool:
        assert self.route_reply is not None
        assert self.originating_channel is not None and self.originating_to is not None
        try:
            result = await self.route_reply(
                payload=payload,
                channel=self.originating_channel,
                to=self.originating_to,
                session_key=self.ctx.session_key,
                account_id=self.ctx.account_id,
                thread_id=self.ctx.thread_id,
                cfg=self.cfg,
            )
        except Exception as exc:
            result = RouteReplyResult(ok=False, error=str(exc))

        if not result.ok:
            logger.warning(
                "acp.delivery.route_failed",
                kind=kind,
                channel=self.originating_channel,
                error=result.error or "unknown error",
            )
            return False

        if kind == "tool" and tool_call_id and result.message_id:
            self._state.tool_message_by_call_id[tool_call_id] = ToolMessageHandle(
                channel=self.originating_channel,
                to=self.originating_to,
                message_id=result.message_id,
                account_id=self.ctx.account_id,
                thread_id=self.ctx.thread_id,
            )
        self._state.routed_counts[kind] += 1
        return True

    def _dispatch_direct(self, kind: ReplyDispatchKind, payload: ReplyPayload) -> bool:
        try:
            if kind == "tool":
                return self.dispatcher.send_tool_result(payload)
            if kind == "block":
                return self.dispatcher.send_block_reply(payload)
            return self.dispatcher.send_final_reply(payload)
        except Exception as exc:
            logger.warning("acp.delivery.dispatch_failed", kind=kind, error=str(exc))
            return False
