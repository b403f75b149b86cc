"""Core channel abstractions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class ChannelActionError(Exception):
    """A channel rejected or does not support a message action."""


@dataclass
class ChannelInboundEvent:
    """Normalized inbound event from a channel provider."""

    channel: str
    session_key: str
    sender_id: str
    peer_id: str
    text: str
    message_id: str | None = None
    update_id: str | None = None
    thread_id: str | None = None
    account_id: str | None = None
    inbound_audio: bool = False


@dataclass
class ChannelStatus:
    """Runtime status snapshot for a channel provider."""

    channel: str
    mode: str
    running: bool
    enabled: bool
    last_error: str | None = None
    last_inbound_at: str | None = None
    last_outbound_at: str | None = None


@dataclass(frozen=True)
class SentMessage:
    """Identity of a message a provider delivered."""

    channel: str
    to: str
    message_id: str | None
    thread_id: str | None = None


class ChannelProvider(ABC):
    """Interface implemented by all channel providers."""

    supports_edit: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def enabled(self) -> bool:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    def status(self) -> ChannelStatus:
        ...

    @abstractmethod
    async def send_message(
        self,
        to: str,
        text: str,
        *,
        thread_id: str | None = None,
        account_id: str | None = None,
        media_url: str | None = None,
    ) -> SentMessage:
        """Send one message; raise ChannelActionError when the platform refuses it."""
        ...

    async def edit_message(
        self,
        to: str,
        message_id: str,
        text: str,
        *,
        thread_id: str | None = None,
        account_id: str | None = None,
    ) -> None:
        """Replace the text of a message this provider sent earlier."""
        raise ChannelActionError(f"{self.name} does not support editing messages")

    async def send_typing(self, to: str, *, thread_id: str | None = None) -> None:
        """Show a "working on it" indicator; providers without one do nothing."""
        return None
