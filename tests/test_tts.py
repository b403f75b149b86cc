from __future__ import annotations

import httpx
import pytest

from courier.config import CourierConfig, TtsConfig
from courier.reply.payload import ReplyPayload
from courier.reply.tts import HttpTtsSynthesizer, maybe_apply_tts_to_payload, resolve_tts_auto, tts_applies


class _Synth:
    def __init__(self, url: str | None = "https://tts.example/a.ogg", error: Exception | None = None) -> None:
        self.url = url
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    async def synthesize(self, text: str, *, channel: str | None = None) -> str | None:
        self.calls.append((text, channel))
        if self.error is not None:
            raise self.error
        return self.url


def _cfg(**tts: object) -> CourierConfig:
    return CourierConfig(tts=TtsConfig(**tts))


def test_session_override_wins() -> None:
    assert resolve_tts_auto(_cfg(auto="off"), "always") == "always"
    assert resolve_tts_auto(_cfg(auto="inbound")) == "inbound"
    assert resolve_tts_auto(_cfg(auto="always"), "bogus") == "off"


def test_applicability_matrix() -> None:
    always_final = _cfg(auto="always", mode="final")
    always_all = _cfg(auto="always", mode="all")
    inbound = _cfg(auto="inbound", mode="final")

    assert tts_applies(cfg=always_final, kind="final", inbound_audio=False) is True
    assert tts_applies(cfg=always_final, kind="block", inbound_audio=False) is False
    assert tts_applies(cfg=always_all, kind="block", inbound_audio=False) is True
    assert tts_applies(cfg=always_all, kind="tool", inbound_audio=False) is False
    assert tts_applies(cfg=inbound, kind="final", inbound_audio=False) is False
    assert tts_applies(cfg=inbound, kind="final", inbound_audio=True) is True
    assert tts_applies(cfg=_cfg(), kind="final", inbound_audio=True) is False


@pytest.mark.asyncio
async def test_passthrough_without_synthesizer_or_when_off() -> None:
    payload = ReplyPayload(text="hello")

    assert await maybe_apply_tts_to_payload(payload=payload, cfg=_cfg(auto="always"), kind="final", inbound_audio=False) is payload

    synth = _Synth()
    result = await maybe_apply_tts_to_payload(
        payload=payload, cfg=_cfg(), kind="final", inbound_audio=False, synthesizer=synth
    )
    assert result is payload
    assert synth.calls == []


@pytest.mark.asyncio
async def test_attaches_voice_media() -> None:
    synth = _Synth()

    result = await maybe_apply_tts_to_payload(
        payload=ReplyPayload(text=" hello "),
        cfg=_cfg(auto="always"),
        kind="final",
        inbound_audio=False,
        channel="telegram",
        synthesizer=synth,
    )

    assert result.text == " hello "
    assert result.media_url == "https://tts.example/a.ogg"
    assert result.audio_as_voice is True
    assert synth.calls == [("hello", "telegram")]


@pytest.mark.asyncio
async def test_synthesis_errors_keep_original_payload() -> None:
    payload = ReplyPayload(text="hello")
    synth = _Synth(error=httpx.ConnectError("refused"))

    result = await maybe_apply_tts_to_payload(
        payload=payload, cfg=_cfg(auto="always"), kind="final", inbound_audio=False, synthesizer=synth
    )

    assert result is payload


@pytest.mark.asyncio
async def test_http_synthesizer(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url == "https://tts.example/speak"
        return httpx.Response(200, json={"url": "https://tts.example/out.ogg"})

    original = httpx.AsyncClient

    def client_factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return original(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)
    synthesizer = HttpTtsSynthesizer(TtsConfig(endpoint="https://tts.example/speak", voice="alloy"))

    assert await synthesizer.synthesize("hi") == "https://tts.example/out.ogg"
    assert await HttpTtsSynthesizer(TtsConfig()).synthesize("hi") is None
