"""Optional text-to-speech post-processing for replies."""

from __future__ import annotations

from dataclasses import replace
from typing import Protocol

import httpx
import structlog

from courier.config import CourierConfig, TtsConfig
from courier.reply.payload import ReplyDispatchKind, ReplyPayload

logger = structlog.get_logger()


class TtsSynthesizer(Protocol):
    async def synthesize(self, text: str, *, channel: str | None = None) -> str | None:
        """Return a media URL for the spoken ``text``, or None."""
        ...


class HttpTtsSynthesizer:
    """Posts text to an HTTP synthesis endpoint that answers ``{"url": ...}``."""

    def __init__(self, config: TtsConfig) -> None:
        self.config = config

    async def synthesize(self, text: str, *, channel: str | None = None) -> str | None:
        if not self.config.endpoint:
            return None
        payload = {"text": text, "voice": self.config.voice, "channel": channel}
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout_s)) as client:
            response = await client.post(self.config.endpoint, json=payload)
        if response.status_code >= 400:
            logger.warning("tts.synthesize.failed", status_code=response.status_code, body=response.text[:300])
            return None
        url = response.json().get("url")
        return url if isinstance(url, str) and url.strip() else None


def resolve_tts_auto(cfg: CourierConfig, session_tts_auto: str | None = None) -> str:
    auto = (session_tts_auto or cfg.tts.auto or "off").strip().lower()
    return auto if auto in {"off", "always", "inbound"} else "off"


def tts_applies(
    *,
    cfg: CourierConfig,
    kind: ReplyDispatchKind,
    inbound_audio: bool,
    tts_auto: str | None = None,
) -> bool:
    auto = resolve_tts_auto(cfg, tts_auto)
    if auto == "off" or kind == "tool":
        return False
    if auto == "inbound" and not inbound_audio:
        return False
    return cfg.tts.mode == "all" or kind == "final"


async def maybe_apply_tts_to_payload(
    *,
    payload: ReplyPayload,
    cfg: CourierConfig,
    kind: ReplyDispatchKind,
    inbound_audio: bool,
    channel: str | None = None,
    tts_auto: str | None = None,
    synthesizer: TtsSynthesizer | None = None,
) -> ReplyPayload:
    """Attach synthesized audio to ``payload`` when TTS applies; pass through otherwise."""
    if synthesizer is None or payload.media_url:
        return payload
    if not tts_applies(cfg=cfg, kind=kind, inbound_audio=inbound_audio, tts_auto=tts_auto):
        return payload
    text = (payload.text or "").strip()
    if not text:
        return payload

    try:
        media_url = await synthesizer.synthesize(text, channel=channel)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("tts.synthesize.error", kind=kind, error=str(exc))
        return payload
    if not media_url:
        return payload
    return replace(payload, media_url=media_url, audio_as_voice=True)
