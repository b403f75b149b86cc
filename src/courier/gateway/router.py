"""Routing of replies to explicit channel destinations."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from courier.channels.base import ChannelActionError
from courier.reply.payload import EditMessageParams, ReplyPayload, RouteReplyResult

logger = structlog.get_logger()


class ReplyRouter:
    """Routes replies to channel providers, webhooks, or logs.

    ``route_reply`` reports failures in its result. ``run_message_action``
    raises ChannelActionError, since callers treat a failed edit as "not
    applicable" and fall back to sending.
    """

    def __init__(self, *, channel_manager=None, webhook_timeout_s: int = 10) -> None:
        self.channel_manager = channel_manager
        self.webhook_timeout_s = max(1, int(webhook_timeout_s))

    async def route_reply(
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
        normalized = (channel or "").strip().lower()
        if not normalized:
            return RouteReplyResult(ok=False, error="missing channel")
        text = payload.text or ""

        if normalized == "log":
            logger.info(
                "gateway.output.log",
                session_key=session_key,
                target=to,
                preview=text[:240],
                media_url=payload.media_url,
            )
            return RouteReplyResult(ok=True)

        if normalized == "webhook":
            return await self._dispatch_webhook(
                url=to,
                payload=payload,
                session_key=session_key,
                thread_id=thread_id,
            )

        provider = self.channel_manager.get(normalized) if self.channel_manager is not None else None
        if provider is None:
            logger.warning("gateway.output.unhandled", channel=normalized, target=to)
            return RouteReplyResult(ok=False, error=f"unknown channel: {normalized}")

        try:
            sent = await provider.send_message(
                to,
                text,
                thread_id=thread_id,
                account_id=account_id,
                media_url=payload.media_url,
            )
        except (ChannelActionError, httpx.HTTPError) as exc:
            logger.warning(
                "gateway.output.channel_failed",
                channel=normalized,
                target=to,
                error=str(exc),
            )
            return RouteReplyResult(ok=False, error=str(exc))
        return RouteReplyResult(ok=True, message_id=sent.message_id)

    async def run_message_action(
        self,
        *,
        action: str,
        params: EditMessageParams,
        session_key: str,
    ) -> dict[str, bool]:
        if action != "edit":
            raise ChannelActionError(f"unsupported message action: {action}")
        provider = self.channel_manager.get(params.channel) if self.channel_manager is not None else None
        if provider is None:
            raise ChannelActionError(f"unknown channel: {params.channel}")
        if not provider.supports_edit:
            raise ChannelActionError(f"{provider.name} does not support editing messages")

        try:
            await provider.edit_message(
                params.to,
                params.message_id,
                params.message,
                thread_id=params.thread_id,
                account_id=params.account_id,
            )
        except httpx.HTTPError as exc:
            raise ChannelActionError(str(exc)) from exc
        logger.debug(
            "gateway.output.edited",
            channel=provider.name,
            message_id=params.message_id,
            session_key=session_key,
        )
        return {"ok": True}

    async def _dispatch_webhook(
        self,
        *,
        url: str,
        payload: ReplyPayload,
        session_key: str,
        thread_id: str | None,
    ) -> RouteReplyResult:
        url = (url or "").strip()
        if not url.startswith(("http://", "https://")):
            logger.warning("gateway.output.webhook.invalid", reason="missing_url", target=url)
            return RouteReplyResult(ok=False, error="invalid webhook url")

        timeout = httpx.Timeout(self.webhook_timeout_s)
        body = {
            "session_key": session_key,
            "thread_id": thread_id,
            "text": payload.text,
            "media_url": payload.media_url,
            "media_urls": list(payload.media_urls),
            "is_error": payload.is_error,
        }
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, json=body)
                if response.status_code >= 400:
                    logger.warning(
                        "gateway.output.webhook.failed",
                        status_code=response.status_code,
                        target=url,
                        body=response.text[:300],
                    )
                    return RouteReplyResult(ok=False, error=f"HTTP {response.status_code}")
            return RouteReplyResult(ok=True)
        except httpx.HTTPError as exc:
            logger.warning("gateway.output.webhook.error", target=url, error=str(exc))
            return RouteReplyResult(ok=False, error=str(exc))
