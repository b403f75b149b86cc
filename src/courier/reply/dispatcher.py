"""Per-turn reply dispatchers.

A dispatcher accepts tool/block/final payloads synchronously (so the turn
never blocks on chat I/O to enqueue) and drains them in order through an
async ``send`` callable.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol

import structlog

from courier.reply.payload import ReplyDispatchKind, ReplyPayload, empty_counts, has_visible_content

logger = structlog.get_logger()

SendReply = Callable[[ReplyDispatchKind, ReplyPayload], Awaitable[None]]


class ReplyDispatcher(Protocol):
    def send_tool_result(self, payload: ReplyPayload) -> bool:
        ...

    def send_block_reply(self, payload: ReplyPayload) -> bool:
        ...

    def send_final_reply(self, payload: ReplyPayload) -> bool:
        ...

    def get_queued_counts(self) -> dict[ReplyDispatchKind, int]:
        ...

    def mark_complete(self) -> None:
        ...

    async def wait_for_idle(self) -> None:
        ...


class QueuedReplyDispatcher:
    """Ordered, fire-and-forget dispatcher backed by an asyncio queue."""

    def __init__(self, send: SendReply, *, name: str = "reply") -> None:
        self._send = send
        self._name = name
        self._queue: asyncio.Queue[tuple[ReplyDispatchKind, ReplyPayload]] = asyncio.Queue()
        self._counts = empty_counts()
        self._failed = 0
        self._complete = False
        self._worker: asyncio.Task[None] | None = None

    def send_tool_result(self, payload: ReplyPayload) -> bool:
        return self._enqueue("tool", payload)

    def send_block_reply(self, payload: ReplyPayload) -> bool:
        return self._enqueue("block", payload)

    def send_final_reply(self, payload: ReplyPayload) -> bool:
        return self._enqueue("final", payload)

    def get_queued_counts(self) -> dict[ReplyDispatchKind, int]:
        return dict(self._counts)

    @property
    def failed_count(self) -> int:
        return self._failed

    def mark_complete(self) -> None:
        self._complete = True

    async def wait_for_idle(self) -> None:
        await self._queue.join()

    async def close(self) -> None:
        self.mark_complete()
        await self.wait_for_idle()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

    def _enqueue(self, kind: ReplyDispatchKind, payload: ReplyPayload) -> bool:
        if self._complete:
            logger.warning("reply.dispatcher.closed", dispatcher=self._name, kind=kind)
            return False
        if not has_visible_content(payload):
            return False
        self._queue.put_nowait((kind, payload))
        self._counts[kind] += 1
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._drain(), name=f"reply-dispatcher-{self._name}"
            )
        return True

    async def _drain(self) -> None:
        while True:
            kind, payload = await self._queue.get()
            try:
                await self._send(kind, payload)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._failed += 1
                logger.warning(
                    "reply.dispatcher.send_failed",
                    dispatcher=self._name,
                    kind=kind,
                    error=str(exc),
                )
            finally:
                self._queue.task_done()
