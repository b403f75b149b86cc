"""In-process ACP session manager."""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Literal

import structlog

from courier.acp.errors import ACP_SESSION_LIMIT, AcpRuntimeError
from courier.acp.runtime import AcpRuntime, EventCallback
from courier.config import AcpConfig

logger = structlog.get_logger()

SessionState = Literal["idle", "running", "error"]
ResolutionKind = Literal["ready", "none", "stale"]


@dataclass
class AcpSessionMeta:
    """Runtime bookkeeping for one bound ACP session."""

    backend: str
    agent: str
    runtime_session_name: str
    mode: Literal["persistent", "oneshot"] = "persistent"
    state: SessionState = "idle"
    last_activity_at: float = field(default_factory=time.time)
    last_error: str | None = None


@dataclass
class SessionResolution:
    kind: ResolutionKind
    session_key: str
    meta: AcpSessionMeta | None = None
    reason: str | None = None


class AcpSessionManager:
    """Owns session metadata and serializes turns per session key."""

    def __init__(self, config: AcpConfig, runtime: AcpRuntime) -> None:
        self.config = config
        self.runtime = runtime
        self._sessions: dict[str, AcpSessionMeta] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._active_turns = 0
        self._queued_turns = 0
        self._completed_turns = 0
        self._failed_turns = 0

    def ensure_session(
        self,
        session_key: str,
        *,
        agent: str | None = None,
        mode: Literal["persistent", "oneshot"] = "persistent",
    ) -> AcpSessionMeta:
        """Return the session bound to ``session_key``, creating it on first use."""
        existing = self._sessions.get(session_key)
        if existing is not None:
            return existing

        if len(self._sessions) >= self.config.max_concurrent_sessions:
            self.evict_idle()
        if len(self._sessions) >= self.config.max_concurrent_sessions:
            raise AcpRuntimeError(
                ACP_SESSION_LIMIT,
                f"ACP session limit reached ({self.config.max_concurrent_sessions}).",
                retryable=True,
            )

        meta = AcpSessionMeta(
            backend=self.runtime.backend,
            agent=(agent or self.config.default_agent).strip().lower(),
            runtime_session_name=f"courier:{uuid.uuid4().hex[:12]}",
            mode=mode,
        )
        self._sessions[session_key] = meta
        logger.info(
            "acp.session.created",
            session_key=session_key,
            agent=meta.agent,
            runtime_session=meta.runtime_session_name,
        )
        return meta

    def resolve_session(self, session_key: str) -> SessionResolution:
        meta = self._sessions.get(session_key)
        if meta is None:
            return SessionResolution(kind="none", session_key=session_key, reason="no ACP session is bound")
        if meta.state == "error":
            return SessionResolution(
                kind="stale",
                session_key=session_key,
                meta=meta,
                reason=meta.last_error or "the previous turn failed",
            )
        if not self.runtime.is_healthy():
            return SessionResolution(
                kind="stale",
                session_key=session_key,
                meta=meta,
                reason=f"ACP backend `{meta.backend}` is unavailable",
            )
        return SessionResolution(kind="ready", session_key=session_key, meta=meta)

    async def run_turn(self, *, session_key: str, prompt: str, on_event: EventCallback) -> None:
        """Run one turn; concurrent turns for the same key wait their turn."""
        meta = self._sessions.get(session_key)
        if meta is None:
            meta = self.ensure_session(session_key)

        lock = self._locks.setdefault(session_key, asyncio.Lock())
        self._queued_turns += 1
        try:
            await lock.acquire()
        finally:
            self._queued_turns -= 1

        self._active_turns += 1
        meta.state = "running"
        meta.last_activity_at = time.time()
        try:
            await self.runtime.run_turn(session=meta, prompt=prompt, on_event=on_event)
        except Exception as exc:
            meta.state = "error"
            meta.last_error = str(exc)
            self._failed_turns += 1
            raise
        else:
            meta.state = "idle"
            meta.last_error = None
            self._completed_turns += 1
        finally:
            meta.last_activity_at = time.time()
            self._active_turns -= 1
            lock.release()
            if meta.mode == "oneshot" and meta.state == "idle":
                self.close_session(session_key)

    def reset_session(self, session_key: str) -> bool:
        """Clear a failed session so the next turn can run."""
        meta = self._sessions.get(session_key)
        if meta is None:
            return False
        meta.state = "idle"
        meta.last_error = None
        return True

    def close_session(self, session_key: str) -> bool:
        meta = self._sessions.pop(session_key, None)
        lock = self._locks.get(session_key)
        if lock is not None and not lock.locked():
            self._locks.pop(session_key, None)
        if meta is not None:
            logger.info("acp.session.closed", session_key=session_key, agent=meta.agent)
        return meta is not None

    def evict_idle(self, now: float | None = None) -> list[str]:
        """Close idle sessions older than the configured TTL."""
        ttl_minutes = self.config.runtime.ttl_minutes
        if ttl_minutes <= 0:
            return []
        cutoff = (now if now is not None else time.time()) - ttl_minutes * 60
        expired = [
            key
            for key, meta in self._sessions.items()
            if meta.state != "running" and meta.last_activity_at < cutoff
        ]
        for key in expired:
            self.close_session(key)
        return expired

    def sessions(self) -> dict[str, AcpSessionMeta]:
        return dict(self._sessions)

    def observability_snapshot(self) -> dict:
        return {
            "backend": self.runtime.backend,
            "backend_healthy": self.runtime.is_healthy(),
            "turns": {
                "active": self._active_turns,
                "queue_depth": self._queued_turns,
                "completed": self._completed_turns,
                "failed": self._failed_turns,
            },
            "runtime_cache": {"active_sessions": len(self._sessions)},
        }
