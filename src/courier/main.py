"""Courier FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from courier.acp.runtime import SubprocessAcpRuntime
from courier.acp.session import AcpSessionManager
from courier.channels.base import ChannelInboundEvent
from courier.channels.manager import ChannelRuntimeManager
from courier.config import get_config
from courier.gateway import CourierGateway, InboundEvent, ReplyRouter
from courier.logging import setup_logging
from courier.reply.tts import HttpTtsSynthesizer

logger = structlog.get_logger()

EVICTION_INTERVAL_S = 60


async def _evict_idle_sessions(session_manager: AcpSessionManager) -> None:
    while True:
        await asyncio.sleep(EVICTION_INTERVAL_S)
        evicted = session_manager.evict_idle()
        if evicted:
            logger.info("courier.sessions.evicted", count=len(evicted))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)

    logger.info("courier.starting", version="0.1.0", backend=config.acp.backend, agent=config.acp.default_agent)

    runtime = SubprocessAcpRuntime(config.acp.runtime)
    if not runtime.is_healthy():
        logger.warning("courier.acp.backend_unavailable", command=config.acp.runtime.command[:1])
    session_manager = AcpSessionManager(config.acp, runtime)

    reply_router = ReplyRouter(
        channel_manager=None,
        webhook_timeout_s=config.webhooks.outbound_timeout_s,
    )
    tts_synthesizer = HttpTtsSynthesizer(config.tts) if config.tts.endpoint else None
    event_gateway = CourierGateway(
        config=config,
        session_manager=session_manager,
        reply_router=reply_router,
        tts_synthesizer=tts_synthesizer,
    )

    async def handle_channel_inbound(event: ChannelInboundEvent) -> None:
        await event_gateway.handle_event(
            InboundEvent(
                channel=event.channel,
                session_key=event.session_key,
                sender_id=event.sender_id,
                peer_id=event.peer_id,
                text=event.text,
                message_id=event.message_id,
                thread_id=event.thread_id,
                account_id=event.account_id,
                inbound_audio=event.inbound_audio,
                originating_channel=event.channel,
                originating_to=event.peer_id,
                metadata={"update_id": event.update_id},
            )
        )

    channel_manager = ChannelRuntimeManager(config, handle_channel_inbound)
    reply_router.channel_manager = channel_manager
    event_gateway.channel_manager = channel_manager
    await channel_manager.start()

    eviction_task = asyncio.create_task(_evict_idle_sessions(session_manager), name="acp-session-eviction")

    app.state.config = config
    app.state.session_manager = session_manager
    app.state.reply_router = reply_router
    app.state.channel_manager = channel_manager
    app.state.event_gateway = event_gateway

    logger.info("courier.ready", channels=[provider.name for provider in channel_manager.providers if provider.enabled])

    yield

    logger.info("courier.shutting_down")
    eviction_task.cancel()
    try:
        await eviction_task
    except asyncio.CancelledError:
        pass
    await channel_manager.stop()
    logger.info("courier.stopped")


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="Courier",
        version="0.1.0",
        description="Routes chat messages through ACP agent turns and streams the replies back.",
        lifespan=lifespan,
    )

    from courier.api.routes.acp import router as acp_router
    from courier.api.routes.channels import router as channels_router
    from courier.api.routes.health import router as health_router

    app.include_router(health_router, tags=["health"])
    app.include_router(acp_router, tags=["acp"])
    app.include_router(channels_router, tags=["channels"])

    return app


app = create_app()


def main() -> None:
    """Run the server directly."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)
    uvicorn.run(
        "courier.main:app",
        host=config.host,
        port=config.port,
        log_level="warning",
    )


if __name__ == "__main__":
    main()
