"""Reply payloads flowing from a turn to chat sinks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ReplyDispatchKind = Literal["tool", "block", "final"]

REPLY_DISPATCH_KINDS: tuple[ReplyDispatchKind, ...] = ("tool", "block", "final")


@dataclass(frozen=True)
class ReplyPayload:
    """One outbound reply: text and/or media and/or structured attachments."""

    text: str | None = None
    media_url: str | None = None
    media_urls: tuple[str, ...] = ()
    attachments: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    audio_as_voice: bool = False
    is_error: bool = False


def has_visible_content(payload: ReplyPayload) -> bool:
    """True when delivering ``payload`` shows the user something."""
    if payload.text and payload.text.strip():
        return True
    return bool(payload.media_url or payload.media_urls or payload.attachments)


def empty_counts() -> dict[ReplyDispatchKind, int]:
    return {"tool": 0, "block": 0, "final": 0}


@dataclass(frozen=True)
class RouteReplyResult:
    """Outcome of routing a payload to an explicit channel destination."""

    ok: bool
    message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class EditMessageParams:
    """Identity of a sent message plus its replacement text."""

    channel: str
    to: str
    message_id: str
    message: str
    account_id: str | None = None
    thread_id: str | None = None
