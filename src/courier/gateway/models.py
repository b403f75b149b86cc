"""Gateway event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from courier.reply.payload import ReplyDispatchKind, ReplyPayload


@dataclass
class InboundEvent:
    """Normalized inbound message accepted by the Courier gateway."""

    channel: str
    session_key: str
    sender_id: str
    peer_id: str
    text: str
    agent: str | None = None
    message_id: str | None = None
    thread_id: str | None = None
    account_id: str | None = None
    inbound_audio: bool = False
    # Set when replies must go back to the chat the message came from.
    originating_channel: str | None = None
    originating_to: str | None = None
    # Extra destination for replies of turns without an originating chat, e.g. "webhook:https://..."
    output_target: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveredReply:
    kind: ReplyDispatchKind
    payload: ReplyPayload

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "text": self.payload.text,
            "media_url": self.payload.media_url,
            "is_error": self.payload.is_error,
        }


@dataclass
class ProcessedEventResult:
    """Result after an inbound event is processed by Courier."""

    session_key: str
    handled: bool
    replies: list[DeliveredReply] = field(default_factory=list)
    counts: dict[ReplyDispatchKind, int] = field(default_factory=dict)
    queued_final: bool = False
    routed_to_originating: bool = False
    stop_reason: str | None = None
    error_code: str | None = None

    @property
    def response_text(self) -> str:
        """Final reply text, else the streamed blocks joined together."""
        finals = [reply.payload.text for reply in self.replies if reply.kind == "final" and reply.payload.text]
        if finals:
            return "\n".join(finals)
        return "".join(reply.payload.text or "" for reply in self.replies if reply.kind == "block")
