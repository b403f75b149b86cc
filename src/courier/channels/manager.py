"""Channel runtime manager."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from courier.channels.base import ChannelInboundEvent, ChannelProvider, ChannelStatus
from courier.channels.telegram.provider import TelegramChannelProvider
from courier.channels.thread_cache import ThreadParticipationCache
from courier.config import CourierConfig

logger = structlog.get_logger()

InboundHandler = Callable[[ChannelInboundEvent], Awaitable[None]]


def parse_channel_target(target: str) -> tuple[str, str] | None:
    """Split ``"telegram:123"`` into ``("telegram", "123")``; a bare name has an empty destination."""
    normalized = (target or "").strip()
    if not normalized:
        return None
    channel, _, destination = normalized.partition(":")
    channel_name = channel.strip().lower()
    if not channel_name:
        return None
    return channel_name, destination.strip()


class ChannelRuntimeManager:
    """Owns lifecycle and status of all enabled channel providers."""

    def __init__(
        self,
        config: CourierConfig,
        inbound_handler: InboundHandler,
        *,
        providers: list[ChannelProvider] | None = None,
    ) -> None:
        self.config = config
        self.inbound_handler = inbound_handler
        self.thread_cache = ThreadParticipationCache(
            ttl_seconds=config.channels.thread_cache_ttl_hours * 3600,
            max_entries=config.channels.thread_cache_max_entries,
        )
        self.providers: list[ChannelProvider] = []

        if providers is None:
            self._initialize_providers()
        else:
            self.providers.extend(providers)

    def _initialize_providers(self) -> None:
        telegram = TelegramChannelProvider(
            config=self.config.channels.telegram,
            inbound_handler=self.inbound_handler,
            thread_cache=self.thread_cache,
        )
        self.providers.append(telegram)

    async def start(self) -> None:
        """Start all configured providers."""
        for provider in self.providers:
            if not provider.enabled:
                logger.info("channels.provider.disabled", provider=provider.name)
                continue
            try:
                await provider.start()
                logger.info("channels.provider.started", provider=provider.name)
            except Exception as e:
                logger.error("channels.provider.start_failed", provider=provider.name, error=str(e))

    async def stop(self) -> None:
        """Stop all providers."""
        for provider in self.providers:
            try:
                await provider.stop()
                logger.info("channels.provider.stopped", provider=provider.name)
            except Exception as e:
                logger.warning(
                    "channels.provider.stop_failed",
                    provider=provider.name,
                    error=str(e),
                )
        self.thread_cache.clear()

    def statuses(self) -> list[ChannelStatus]:
        """Return runtime statuses for all providers."""
        return [provider.status() for provider in self.providers]

    def get(self, channel: str) -> ChannelProvider | None:
        name = (channel or "").strip().lower()
        for provider in self.providers:
            if provider.name.lower() == name:
                return provider
        return None
