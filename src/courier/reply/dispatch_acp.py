"""Turn dispatch controller: runs one ACP turn and routes its output to chat."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

import structlog

from courier.acp.errors import ACP_SESSION_INIT_FAILED, ACP_TURN_FAILED, AcpRuntimeError, format_acp_error_text
from courier.acp.events import DoneEvent, ErrorEvent, StatusEvent, TextDelta, ToolCallEvent
from courier.acp.policy import resolve_agent_policy_error, resolve_dispatch_policy_error
from courier.acp.projector import coerce_runtime_event
from courier.acp.runtime import EventCallback
from courier.acp.session import SessionResolution
from courier.config import CourierConfig
from courier.logging import bound_turn
from courier.reply.delivery import (
    AcpDeliveryCoordinator,
    DeliveryMeta,
    DispatchContext,
    ReplyStartCallback,
    RouteReply,
    RunMessageAction,
)
from courier.reply.dispatcher import ReplyDispatcher
from courier.reply.payload import ReplyDispatchKind, ReplyPayload
from courier.reply.stream import AcpReplyProjection, PlannedDelivery
from courier.reply.tts import TtsSynthesizer, maybe_apply_tts_to_payload, tts_applies

logger = structlog.get_logger()

DispatchPolicy = Callable[[CourierConfig], AcpRuntimeError | None]
AgentPolicy = Callable[[CourierConfig, str], AcpRuntimeError | None]


class TurnRunner(Protocol):
    def resolve_session(self, session_key: str) -> SessionResolution:
        ...

    async def run_turn(self, *, session_key: str, prompt: str, on_event: EventCallback) -> None:
        ...


@dataclass
class AcpDispatchResult:
    queued_final: bool
    counts: dict[ReplyDispatchKind, int] = field(default_factory=dict)
    routed_to_originating: bool = False
    stop_reason: str | None = None
    error_code: str | None = None


class _TurnStream:
    """Feeds runtime events of one turn through projection and delivery."""

    def __init__(self, *, cfg: CourierConfig, delivery: AcpDeliveryCoordinator, projection: AcpReplyProjection) -> None:
        self.cfg = cfg
        self.delivery = delivery
        self.projection = projection
        self.terminal = False
        self.stop_reason: str | None = None
        self.error_code: str | None = None
        self.queued_final = False

    async def on_event(self, raw: Any) -> None:
        if self.terminal:
            logger.debug("acp.dispatch.event_after_terminal")
            return
        event = coerce_runtime_event(raw)
        if event is None:
            return

        if isinstance(event, TextDelta):
            await self._deliver(self.projection.on_text(event))
        elif isinstance(event, ToolCallEvent):
            await self._deliver(self.projection.on_tool_call(event))
        elif isinstance(event, StatusEvent):
            await self._deliver(self.projection.on_status(event))
        elif isinstance(event, DoneEvent):
            self.terminal = True
            self.stop_reason = event.stop_reason
            await self._finish_output()
        elif isinstance(event, ErrorEvent):
            self.terminal = True
            self.error_code = event.code or ACP_TURN_FAILED
            logger.warning("acp.dispatch.turn_error", code=self.error_code, message=event.message)
            discarded = len(self.projection.buffered_text)
            if discarded:
                logger.info("acp.dispatch.buffer_discarded", chars=discarded)
            await self._deliver_final(
                ReplyPayload(text=format_acp_error_text(self.error_code, event.message), is_error=True)
            )

    async def close(self) -> None:
        """Finish output when the runtime returned without a terminal event."""
        if not self.terminal:
            self.terminal = True
            await self._finish_output()

    async def _deliver(self, planned: PlannedDelivery | None) -> None:
        if planned is None:
            return
        if planned.kind == "final":
            await self._deliver_final(planned.payload)
            return

        ok = await self.delivery.deliver(planned.kind, planned.payload, planned.meta)
        if not ok and planned.meta.allow_edit and self.delivery.routes_to_originating:
            logger.debug("acp.dispatch.tool_edit_fallback", tool_call_id=planned.meta.tool_call_id)
            ok = await self.delivery.deliver(
                planned.kind,
                planned.payload,
                replace(planned.meta, allow_edit=False),
            )
        if not ok:
            logger.info("acp.dispatch.delivery_dropped", kind=planned.kind)

    async def _deliver_final(self, payload: ReplyPayload) -> None:
        if await self.delivery.deliver("final", payload, DeliveryMeta()):
            self.queued_final = True

    async def _finish_output(self) -> None:
        flushed = self.projection.flush_final()
        if flushed is not None:
            await self._deliver_final(flushed.payload)
            return
        await self._maybe_send_tts_final()

    async def _maybe_send_tts_final(self) -> None:
        delivery = self.delivery
        if delivery.tts_synthesizer is None or delivery.block_count == 0:
            return
        if self.cfg.tts.mode != "final" or not tts_applies(
            cfg=self.cfg,
            kind="final",
            inbound_audio=delivery.inbound_audio,
            tts_auto=delivery.session_tts_auto,
        ):
            return
        spoken = await maybe_apply_tts_to_payload(
            payload=ReplyPayload(text=delivery.accumulated_block_text),
            cfg=self.cfg,
            kind="final",
            inbound_audio=delivery.inbound_audio,
            channel=delivery.tts_channel,
            tts_auto=delivery.session_tts_auto,
            synthesizer=delivery.tts_synthesizer,
        )
        if not spoken.media_url:
            return
        # Text already went out as blocks; the final carries only the audio.
        await self._deliver_final(ReplyPayload(media_url=spoken.media_url, audio_as_voice=True))


def _resolution_error(resolution: SessionResolution) -> AcpRuntimeError:
    if resolution.kind == "stale":
        reason = resolution.reason or "the ACP session is stale"
        return AcpRuntimeError(ACP_SESSION_INIT_FAILED, f"ACP session is not usable: {reason}.")
    return AcpRuntimeError(ACP_SESSION_INIT_FAILED, resolution.reason or "no ACP session is bound")


async def try_dispatch_acp_reply(
    *,
    ctx: DispatchContext,
    cfg: CourierConfig,
    dispatcher: ReplyDispatcher,
    session_manager: TurnRunner,
    inbound_audio: bool = False,
    session_tts_auto: str | None = None,
    should_route_to_originating: bool = False,
    originating_channel: str | None = None,
    originating_to: str | None = None,
    should_send_tool_summaries: bool = True,
    bypass_for_command: bool = False,
    on_reply_start: ReplyStartCallback | None = None,
    route_reply: RouteReply | None = None,
    run_message_action: RunMessageAction | None = None,
    tts_synthesizer: TtsSynthesizer | None = None,
    resolve_dispatch_policy: DispatchPolicy = resolve_dispatch_policy_error,
    resolve_agent_policy: AgentPolicy = resolve_agent_policy_error,
) -> AcpDispatchResult | None:
    """Run one ACP turn for ``ctx`` and deliver its output.

    Returns None when ACP dispatch does not handle the message at all (the
    caller's command path or an empty prompt). Policy and session problems
    are reported to the user as a single final reply. Exceptions raised by
    the runtime itself propagate.
    """
    if bypass_for_command:
        return None

    prompt = (ctx.prompt or "").strip()
    if not prompt:
        logger.debug("acp.dispatch.skipped", reason="empty_prompt", session_key=ctx.session_key)
        return None

    with bound_turn(session_key=ctx.session_key, channel=ctx.channel):
        delivery = AcpDeliveryCoordinator(
            cfg=cfg,
            ctx=ctx,
            dispatcher=dispatcher,
            inbound_audio=inbound_audio,
            session_tts_auto=session_tts_auto,
            tts_channel=originating_channel or ctx.channel,
            should_route_to_originating=should_route_to_originating,
            originating_channel=originating_channel,
            originating_to=originating_to,
            on_reply_start=on_reply_start,
            route_reply=route_reply,
            run_message_action=run_message_action,
            tts_synthesizer=tts_synthesizer,
        )

        def result(*, queued_final: bool, stop_reason: str | None = None, error_code: str | None = None) -> AcpDispatchResult:
            counts = dict(dispatcher.get_queued_counts())
            delivery.apply_routed_counts(counts)
            return AcpDispatchResult(
                queued_final=queued_final,
                counts=counts,
                routed_to_originating=delivery.routes_to_originating,
                stop_reason=stop_reason,
                error_code=error_code,
            )

        async def refuse(error: AcpRuntimeError) -> AcpDispatchResult:
            logger.info("acp.dispatch.refused", code=error.code, reason=error.message)
            queued = await delivery.deliver(
                "final",
                ReplyPayload(text=format_acp_error_text(error.code, error.message), is_error=True),
            )
            return result(queued_final=queued, error_code=error.code)

        policy_error = resolve_dispatch_policy(cfg)
        if policy_error is not None:
            return await refuse(policy_error)

        resolution = session_manager.resolve_session(ctx.session_key)
        if resolution.kind != "ready" or resolution.meta is None:
            return await refuse(_resolution_error(resolution))

        agent_error = resolve_agent_policy(cfg, resolution.meta.agent)
        if agent_error is not None:
            return await refuse(agent_error)

        stream = _TurnStream(
            cfg=cfg,
            delivery=delivery,
            projection=AcpReplyProjection(cfg.acp.stream, send_tool_summaries=should_send_tool_summaries),
        )
        logger.info("acp.dispatch.turn_started", agent=resolution.meta.agent)
        await session_manager.run_turn(session_key=ctx.session_key, prompt=prompt, on_event=stream.on_event)
        await stream.close()

        logger.info(
            "acp.dispatch.turn_finished",
            stop_reason=stream.stop_reason,
            error_code=stream.error_code,
            blocks=delivery.block_count,
            hidden_events=stream.projection.hidden_events,
        )
        return result(
            queued_final=stream.queued_final,
            stop_reason=stream.stop_reason,
            error_code=stream.error_code,
        )
