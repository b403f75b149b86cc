"""ACP backend runtimes: the event sources behind a session."""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from courier.acp.errors import (
    ACP_BACKEND_UNAVAILABLE,
    ACP_TURN_FAILED,
    ACP_TURN_TIMEOUT,
    AcpRuntimeError,
)
from courier.acp.events import DoneEvent, ErrorEvent
from courier.acp.projector import parse_control_json_error, parse_json_lines, parse_prompt_event_line
from courier.config import AcpRuntimeConfig

if TYPE_CHECKING:
    from courier.acp.session import AcpSessionMeta

logger = structlog.get_logger()

EventCallback = Callable[[Any], Awaitable[None]]

_STREAM_LIMIT = 1024 * 1024


class AcpRuntime(Protocol):
    """Backend that runs one prompt turn and reports its protocol events."""

    backend: str

    def is_healthy(self) -> bool:
        ...

    async def run_turn(self, *, session: AcpSessionMeta, prompt: str, on_event: EventCallback) -> None:
        ...


class SubprocessAcpRuntime:
    """Spawns the backend CLI once per turn and streams its stdout lines.

    The prompt is written to stdin. Each non-blank stdout line is handed to
    ``on_event`` verbatim, in emission order.
    """

    backend = "acpx"

    def __init__(self, config: AcpRuntimeConfig) -> None:
        self.config = config

    def is_healthy(self) -> bool:
        if not self.config.command:
            return False
        return shutil.which(self.config.command[0]) is not None

    def build_command(self, session: AcpSessionMeta) -> list[str]:
        return [
            part.replace("{agent}", session.agent).replace("{session}", session.runtime_session_name)
            for part in self.config.command
        ]

    async def run_turn(self, *, session: AcpSessionMeta, prompt: str, on_event: EventCallback) -> None:
        argv = self.build_command(session)
        if not argv:
            raise AcpRuntimeError(ACP_BACKEND_UNAVAILABLE, "ACP runtime command is not configured.")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.config.cwd,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            raise AcpRuntimeError(
                ACP_BACKEND_UNAVAILABLE,
                f"Failed to start ACP runtime `{argv[0]}`: {exc}",
            ) from exc

        logger.info(
            "acp.runtime.spawned",
            backend=self.backend,
            agent=session.agent,
            session=session.runtime_session_name,
            pid=process.pid,
        )

        try:
            await asyncio.wait_for(
                self._pump(process, prompt, on_event),
                timeout=self.config.turn_timeout_s,
            )
        except TimeoutError:
            await self._kill(process)
            raise AcpRuntimeError(
                ACP_TURN_TIMEOUT,
                f"ACP turn timed out after {self.config.turn_timeout_s}s.",
                retryable=True,
            ) from None
        except BaseException:
            await self._kill(process)
            raise

    async def _pump(self, process: asyncio.subprocess.Process, prompt: str, on_event: EventCallback) -> None:
        assert process.stdin is not None
        assert process.stdout is not None
        assert process.stderr is not None

        stderr_task = asyncio.create_task(process.stderr.read())
        try:
            try:
                process.stdin.write(prompt.encode("utf-8"))
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                logger.warning("acp.runtime.stdin_closed", pid=process.pid)
            finally:
                process.stdin.close()

            terminal = False
            async for raw in process.stdout:
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if not line.strip():
                    continue
                if isinstance(parse_prompt_event_line(line), (DoneEvent, ErrorEvent)):
                    terminal = True
                await on_event(line)

            stderr = (await stderr_task).decode("utf-8", errors="replace")
        finally:
            if not stderr_task.done():
                stderr_task.cancel()
                try:
                    await stderr_task
                except asyncio.CancelledError:
                    pass

        exit_code = await process.wait()
        logger.info("acp.runtime.exited", pid=process.pid, exit_code=exit_code, terminal=terminal)

        if exit_code != 0 and not terminal:
            raise self._exit_error(exit_code, stderr)

    @staticmethod
    def _exit_error(exit_code: int, stderr: str) -> AcpRuntimeError:
        for record in reversed(parse_json_lines(stderr)):
            info = parse_control_json_error(record)
            if info is not None:
                return AcpRuntimeError(
                    info.code or ACP_TURN_FAILED,
                    info.message,
                    retryable=bool(info.retryable),
                )
        tail = stderr.strip()[-500:]
        message = f"ACP runtime exited with code {exit_code}."
        if tail:
            message = f"{message} {tail}"
        return AcpRuntimeError(ACP_TURN_FAILED, message)

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


class JsonlReplayRuntime:
    """Replays a recorded protocol stream as if a backend emitted it."""

    backend = "replay"

    def __init__(self, lines: Iterable[str]) -> None:
        self._lines = [line for line in lines if line.strip()]

    @classmethod
    def from_path(cls, path: str | Path) -> JsonlReplayRuntime:
        return cls(Path(path).read_text(encoding="utf-8").splitlines())

    def is_healthy(self) -> bool:
        return True

    async def run_turn(self, *, session: AcpSessionMeta, prompt: str, on_event: EventCallback) -> None:
        logger.debug("acp.replay.start", session=session.runtime_session_name, lines=len(self._lines))
        for line in self._lines:
            await on_event(line)
