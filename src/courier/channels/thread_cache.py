"""Bounded memory of chat threads the bot has replied in.

Lets providers keep answering inside a thread without requiring a fresh
mention after the first reply. One instance is owned by the channel runtime
manager and shared with its providers.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable


class ThreadParticipationCache:
    def __init__(
        self,
        *,
        ttl_seconds: float = 24 * 60 * 60,
        max_entries: int = 5000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def _key(account_id: str, channel_id: str, thread_id: str) -> str:
        return f"{account_id}:{channel_id}:{thread_id}"

    def record(self, account_id: str, channel_id: str, thread_id: str) -> None:
        if not account_id or not channel_id or not thread_id:
            return
        key = self._key(account_id, channel_id, thread_id)
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self.evict_expired()
        while len(self._entries) >= self.max_entries and key not in self._entries:
            self._entries.popitem(last=False)
        self._entries[key] = self._clock()
        self._entries.move_to_end(key)

    def has(self, account_id: str, channel_id: str, thread_id: str) -> bool:
        if not account_id or not channel_id or not thread_id:
            return False
        key = self._key(account_id, channel_id, thread_id)
        recorded_at = self._entries.get(key)
        if recorded_at is None:
            return False
        if self._clock() - recorded_at > self.ttl_seconds:
            del self._entries[key]
            return False
        return True

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [key for key, at in self._entries.items() if now - at > self.ttl_seconds]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
