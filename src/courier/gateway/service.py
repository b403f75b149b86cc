"""Unified event gateway for Courier."""

from __future__ import annotations

import structlog

from courier.acp.errors import AcpRuntimeError, format_acp_error_text
from courier.acp.policy import is_acp_dispatch_enabled
from courier.acp.session import AcpSessionManager
from courier.channels.manager import parse_channel_target
from courier.gateway.models import DeliveredReply, InboundEvent, ProcessedEventResult
from courier.gateway.router import ReplyRouter
from courier.reply.delivery import DispatchContext, ReplyStartCallback
from courier.reply.dispatch_acp import try_dispatch_acp_reply
from courier.reply.dispatcher import QueuedReplyDispatcher
from courier.reply.payload import ReplyDispatchKind, ReplyPayload
from courier.reply.tts import TtsSynthesizer

logger = structlog.get_logger()

COMMANDS = ("/reset", "/close", "/status")


def parse_command(text: str) -> str | None:
    """Return the gateway command addressed by ``text``, if any."""
    head = (text or "").strip().split(maxsplit=1)
    if not head:
        return None
    # Telegram group commands may carry the bot name: "/reset@courier_bot"
    name = head[0].split("@", 1)[0].lower()
    return name if name in COMMANDS else None


class CourierGateway:
    """Single entrypoint for inbound messages: runs ACP turns and delivers their replies."""

    def __init__(
        self,
        *,
        config,
        session_manager: AcpSessionManager,
        reply_router: ReplyRouter,
        channel_manager=None,
        tts_synthesizer: TtsSynthesizer | None = None,
    ) -> None:
        self.config = config
        self.session_manager = session_manager
        self.reply_router = reply_router
        self.channel_manager = channel_manager
        self.tts_synthesizer = tts_synthesizer

    async def handle_event(self, event: InboundEvent) -> ProcessedEventResult:
        """Handle one normalized inbound event end-to-end."""
        command = parse_command(event.text)
        routed = bool(event.originating_channel and event.originating_to)

        replies: list[DeliveredReply] = []

        async def send(kind: ReplyDispatchKind, payload: ReplyPayload) -> None:
            replies.append(DeliveredReply(kind=kind, payload=payload))
            if event.output_target:
                await self._dispatch_output_target(event, payload)

        dispatcher = QueuedReplyDispatcher(send, name=f"{event.channel}:{event.session_key}")
        try:
            if command is None and is_acp_dispatch_enabled(self.config):
                self.session_manager.ensure_session(event.session_key, agent=event.agent)
            result = await try_dispatch_acp_reply(
                ctx=DispatchContext(
                    session_key=event.session_key,
                    channel=event.channel,
                    prompt=event.text,
                    to=event.peer_id,
                    sender_id=event.sender_id,
                    account_id=event.account_id,
                    thread_id=event.thread_id,
                ),
                cfg=self.config,
                dispatcher=dispatcher,
                session_manager=self.session_manager,
                inbound_audio=event.inbound_audio,
                should_route_to_originating=routed,
                originating_channel=event.originating_channel,
                originating_to=event.originating_to,
                should_send_tool_summaries=self._tool_summaries_enabled(event.channel),
                bypass_for_command=command is not None,
                on_reply_start=self._reply_start_callback(event),
                route_reply=self.reply_router.route_reply,
                run_message_action=self.reply_router.run_message_action,
                tts_synthesizer=self.tts_synthesizer,
            )
            if result is None and command is not None:
                await self._respond(event, ReplyPayload(text=self._run_command(command, event)), dispatcher)
        except AcpRuntimeError as exc:
            logger.warning("gateway.turn.failed", session_key=event.session_key, code=exc.code, error=exc.message)
            error_reply = ReplyPayload(text=format_acp_error_text(exc.code, exc.message), is_error=True)
            await self._respond(event, error_reply, dispatcher)
            return ProcessedEventResult(
                session_key=event.session_key,
                handled=True,
                replies=replies,
                counts=dispatcher.get_queued_counts(),
                routed_to_originating=routed,
                error_code=exc.code,
            )
        finally:
            await dispatcher.close()

        if result is None:
            return ProcessedEventResult(session_key=event.session_key, handled=command is not None, replies=replies)

        logger.info(
            "gateway.turn.completed",
            session_key=event.session_key,
            counts=result.counts,
            stop_reason=result.stop_reason,
            error_code=result.error_code,
        )
        return ProcessedEventResult(
            session_key=event.session_key,
            handled=True,
            replies=replies,
            counts=result.counts,
            queued_final=result.queued_final,
            routed_to_originating=result.routed_to_originating,
            stop_reason=result.stop_reason,
            error_code=result.error_code,
        )

    def _run_command(self, command: str, event: InboundEvent) -> str:
        key = event.session_key
        if command == "/reset":
            if self.session_manager.reset_session(key):
                return "ACP session reset."
            return "No ACP session is bound to this chat."
        if command == "/close":
            if self.session_manager.close_session(key):
                return "ACP session closed."
            return "No ACP session is bound to this chat."

        meta = self.session_manager.sessions().get(key)
        if meta is None:
            return "No ACP session is bound to this chat."
        status = f"agent={meta.agent} state={meta.state} session={meta.runtime_session_name}"
        if meta.last_error:
            status += f"\nlast error: {meta.last_error}"
        return status

    async def _respond(self, event: InboundEvent, payload: ReplyPayload, dispatcher: QueuedReplyDispatcher) -> None:
        """Send a gateway-authored reply where the turn's replies would go."""
        if event.originating_channel and event.originating_to:
            result = await self.reply_router.route_reply(
                payload=payload,
                channel=event.originating_channel,
                to=event.originating_to,
                session_key=event.session_key,
                account_id=event.account_id,
                thread_id=event.thread_id,
                cfg=self.config,
            )
            if result.ok:
                return
        dispatcher.send_final_reply(payload)

    def _reply_start_callback(self, event: InboundEvent) -> ReplyStartCallback | None:
        if self.channel_manager is None or not event.originating_channel or not event.originating_to:
            return None
        provider = self.channel_manager.get(event.originating_channel)
        if provider is None:
            return None

        async def start() -> None:
            await provider.send_typing(event.originating_to, thread_id=event.thread_id)

        return start

    def _tool_summaries_enabled(self, channel: str) -> bool:
        if channel == "telegram":
            return self.config.channels.telegram.send_tool_summaries
        return True

    async def _dispatch_output_target(self, event: InboundEvent, payload: ReplyPayload) -> None:
        parsed = parse_channel_target(event.output_target or "")
        if parsed is None:
            return
        channel, destination = parsed
        result = await self.reply_router.route_reply(
            payload=payload,
            channel=channel,
            to=destination,
            session_key=event.session_key,
            thread_id=event.thread_id,
            cfg=self.config,
        )
        if not result.ok:
            logger.warning(
                "gateway.output.failed",
                target=event.output_target,
                session_key=event.session_key,
                error=result.error,
            )
