"""Telegram channel provider (polling-first)."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from courier.channels.base import (
    ChannelActionError,
    ChannelInboundEvent,
    ChannelProvider,
    ChannelStatus,
    SentMessage,
)
from courier.channels.thread_cache import ThreadParticipationCache
from courier.config import TelegramChannelConfig

logger = structlog.get_logger()

InboundHandler = Callable[[ChannelInboundEvent], Awaitable[None]]

ACCOUNT_ID = "default"


def _chat_id_from_target(to: str) -> str:
    target = (to or "").strip()
    if target.lower().startswith("telegram:"):
        target = target.split(":", 1)[1]
    if target.lower().startswith("group:"):
        target = target.split(":", 1)[1]
    # Group session keys carry a thread suffix: "<chat>:thread:<id>"
    return target.split(":", 1)[0].strip()


class TelegramChannelProvider(ChannelProvider):
    supports_edit = True

    def __init__(
        self,
        *,
        config: TelegramChannelConfig,
        inbound_handler: InboundHandler,
        thread_cache: ThreadParticipationCache | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.inbound_handler = inbound_handler
        self.thread_cache = thread_cache or ThreadParticipationCache()

        self._client = http_client
        self._owns_client = http_client is None
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

        self._offset = 0
        self._bot_username: str | None = None
        self._status = ChannelStatus(
            channel="telegram",
            mode=self.config.mode,
            running=False,
            enabled=self.enabled,
        )

    @property
    def name(self) -> str:
        return "telegram"

    @property
    def enabled(self) -> bool:
        return bool(self.config.enabled and self.config.bot_token.strip())

    @property
    def api_base(self) -> str:
        return f"{self.config.api_base.rstrip('/')}/bot{self.config.bot_token.strip()}"

    def status(self) -> ChannelStatus:
        return self._status

    async def start(self) -> None:
        if not self.enabled:
            return
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=self.config.poll_timeout_s + 10.0,
                    write=10.0,
                    pool=10.0,
                )
            )
        self._stop_event.clear()
        self._set_status(running=True)
        self._task = asyncio.create_task(self._poll_loop(), name="channel-telegram-poll")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._set_status(running=False)

    async def send_message(
        self,
        to: str,
        text: str,
        *,
        thread_id: str | None = None,
        account_id: str | None = None,
        media_url: str | None = None,
    ) -> SentMessage:
        chat_id = _chat_id_from_target(to)
        if not chat_id:
            raise ChannelActionError(f"invalid telegram target: {to!r}")

        last_message_id: str | None = None
        if media_url:
            payload: dict[str, Any] = {"chat_id": chat_id, "document": media_url}
            if text.strip():
                payload["caption"] = text.strip()[:1024]
            self._apply_thread(payload, thread_id)
            result = await self._call("sendDocument", payload)
            last_message_id = self._message_id(result)
        else:
            for chunk in self._chunk_text(text):
                payload = {
                    "chat_id": chat_id,
                    "text": chunk,
                    "disable_web_page_preview": True,
                }
                self._apply_thread(payload, thread_id)
                result = await self._call("sendMessage", payload)
                last_message_id = self._message_id(result)

        if thread_id is not None:
            self.thread_cache.record(account_id or ACCOUNT_ID, chat_id, str(thread_id))
        self._set_status(last_outbound_at=self._now_iso())
        return SentMessage(channel=self.name, to=chat_id, message_id=last_message_id, thread_id=thread_id)

    async def edit_message(
        self,
        to: str,
        message_id: str,
        text: str,
        *,
        thread_id: str | None = None,
        account_id: str | None = None,
    ) -> None:
        chat_id = _chat_id_from_target(to)
        if not chat_id or not str(message_id).strip().isdigit():
            raise ChannelActionError(f"invalid telegram edit target: {to!r}/{message_id!r}")
        await self._call(
            "editMessageText",
            {
                "chat_id": chat_id,
                "message_id": int(message_id),
                "text": text[: self.config.max_message_chars],
                "disable_web_page_preview": True,
            },
        )
        self._set_status(last_outbound_at=self._now_iso())

    async def send_typing(self, to: str, *, thread_id: str | None = None) -> None:
        chat_id = _chat_id_from_target(to)
        if not chat_id:
            return
        payload: dict[str, Any] = {"chat_id": chat_id, "action": "typing"}
        self._apply_thread(payload, thread_id)
        await self._call("sendChatAction", payload)

    async def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = self._client
        if client is None:
            raise ChannelActionError("telegram provider is not started")
        resp = await client.post(f"{self.api_base}/{method}", json=payload)
        if resp.status_code >= 400:
            logger.warning(
                "channels.telegram.call_failed",
                method=method,
                status_code=resp.status_code,
                body=resp.text[:300],
            )
            raise ChannelActionError(f"telegram {method} failed with HTTP {resp.status_code}")
        body = resp.json()
        if not body.get("ok"):
            raise ChannelActionError(f"telegram {method} failed: {body.get('description', 'unknown error')}")
        result = body.get("result")
        return result if isinstance(result, dict) else {}

    async def _poll_loop(self) -> None:
        assert self._client is not None
        await self._load_bot_identity(self._client)

        while not self._stop_event.is_set():
            try:
                updates = await self._get_updates(self._client)
                for update in updates:
                    await self._process_update(update)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("channels.telegram.poll_error", error=str(e))
                self._set_status(last_error=str(e))
                await asyncio.sleep(self.config.retry_delay_s)

    async def _load_bot_identity(self, client: httpx.AsyncClient) -> None:
        resp = await client.get(f"{self.api_base}/getMe")
        resp.raise_for_status()
        result = resp.json().get("result") or {}
        username = result.get("username")
        if isinstance(username, str) and username.strip():
            self._bot_username = username.strip().lower()

    async def _get_updates(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        resp = await client.get(
            f"{self.api_base}/getUpdates",
            params={
                "offset": self._offset,
                "timeout": self.config.poll_timeout_s,
                "allowed_updates": '["message"]',
            },
        )
        resp.raise_for_status()
        payload = resp.json()
        if not payload.get("ok"):
            raise RuntimeError(f"Telegram getUpdates failed: {payload}")

        result = payload.get("result", [])
        if not isinstance(result, list):
            return []
        return [item for item in result if isinstance(item, dict)]

    async def _process_update(self, update: dict[str, Any]) -> None:
        update_id = update.get("update_id")
        if isinstance(update_id, int):
            if update_id < self._offset:
                return
            self._offset = update_id + 1

        message = update.get("message")
        if not isinstance(message, dict):
            return

        chat = message.get("chat") or {}
        chat_id = chat.get("id")
        if chat_id is None:
            return
        chat_type = str(chat.get("type") or "private")
        text = (message.get("text") or message.get("caption") or "").strip()
        has_voice = isinstance(message.get("voice"), dict)
        if not text:
            return

        sender = message.get("from") or {}
        sender_id = str(sender.get("id") or "")
        thread_id = message.get("message_thread_id")

        if chat_type != "private":
            if not self.config.groups_enabled:
                logger.info(
                    "channels.telegram.message_blocked",
                    reason="groups_disabled",
                    chat_type=chat_type,
                )
                return
            in_known_thread = thread_id is not None and self.thread_cache.has(
                ACCOUNT_ID, str(chat_id), str(thread_id)
            )
            if self.config.require_mention and not in_known_thread and not self._has_bot_mention(text):
                logger.info(
                    "channels.telegram.message_blocked",
                    reason="mention_required",
                    chat_type=chat_type,
                )
                return

        inbound = ChannelInboundEvent(
            channel="telegram",
            session_key=self._session_key(chat_id=chat_id, chat_type=chat_type, thread_id=thread_id),
            sender_id=sender_id,
            peer_id=str(chat_id),
            thread_id=str(thread_id) if thread_id is not None else None,
            message_id=(
                str(message.get("message_id"))
                if message.get("message_id") is not None
                else None
            ),
            update_id=str(update_id) if update_id is not None else None,
            account_id=ACCOUNT_ID,
            text=text,
            inbound_audio=has_voice,
        )

        self._set_status(last_inbound_at=self._now_iso())
        await self.inbound_handler(inbound)

    def _has_bot_mention(self, text: str) -> bool:
        if not self._bot_username:
            return False
        return f"@{self._bot_username}" in text.lower()

    @staticmethod
    def _session_key(*, chat_id: Any, chat_type: str, thread_id: Any) -> str:
        if chat_type == "private":
            return f"telegram:{chat_id}"
        if thread_id is not None:
            return f"telegram:group:{chat_id}:thread:{thread_id}"
        return f"telegram:group:{chat_id}"

    @staticmethod
    def _apply_thread(payload: dict[str, Any], thread_id: str | None) -> None:
        if thread_id is not None and str(thread_id).strip().isdigit():
            payload["message_thread_id"] = int(thread_id)

    @staticmethod
    def _message_id(result: dict[str, Any]) -> str | None:
        message_id = result.get("message_id")
        return str(message_id) if message_id is not None else None

    def _chunk_text(self, text: str) -> list[str]:
        content = (text or "").strip() or "(empty response)"
        limit = self.config.max_message_chars
        return [content[start : start + limit] for start in range(0, len(content), limit)]

    def _set_status(
        self,
        *,
        running: bool | None = None,
        last_error: str | None = None,
        last_inbound_at: str | None = None,
        last_outbound_at: str | None = None,
    ) -> None:
        if running is not None:
            self._status.running = running
        if last_error is not None:
            self._status.last_error = last_error
        if last_inbound_at is not None:
            self._status.last_inbound_at = last_inbound_at
        if last_outbound_at is not None:
            self._status.last_outbound_at = last_outbound_at

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(UTC).isoformat()
