from __future__ import annotations

import asyncio
import sys

import pytest

from courier.acp.errors import ACP_BACKEND_UNAVAILABLE, ACP_TURN_FAILED, ACP_TURN_TIMEOUT, AcpRuntimeError
from courier.acp.runtime import JsonlReplayRuntime, SubprocessAcpRuntime
from courier.acp.session import AcpSessionMeta
from courier.config import AcpRuntimeConfig

_ECHO_SCRIPT = """
import json, sys
prompt = sys.stdin.read()
print(json.dumps({"type": "text", "content": prompt.upper()}))
print("")
print(json.dumps({"type": "done", "stopReason": "end_turn"}))
"""


def _session() -> AcpSessionMeta:
    return AcpSessionMeta(backend="acpx", agent="codex", runtime_session_name="courier:abc")


def _runtime(script: str, **config: object) -> SubprocessAcpRuntime:
    return SubprocessAcpRuntime(AcpRuntimeConfig(command=[sys.executable, "-c", script], **config))


def test_build_command_substitutes_placeholders() -> None:
    runtime = SubprocessAcpRuntime(
        AcpRuntimeConfig(command=["acpx", "--agent", "{agent}", "--session", "{session}", "prompt"])
    )

    assert runtime.build_command(_session()) == ["acpx", "--agent", "codex", "--session", "courier:abc", "prompt"]


def test_command_accepts_plain_string() -> None:
    assert AcpRuntimeConfig(command="acpx --agent {agent}").command == ["acpx", "--agent", "{agent}"]


def test_health_reflects_command_on_path() -> None:
    assert SubprocessAcpRuntime(AcpRuntimeConfig(command=[sys.executable])).is_healthy() is True
    assert SubprocessAcpRuntime(AcpRuntimeConfig(command=["/nonexistent/courier-acp"])).is_healthy() is False


@pytest.mark.asyncio
async def test_streams_stdout_lines_in_order() -> None:
    lines: list[str] = []

    async def on_event(line: str) -> None:
        lines.append(line)

    await _runtime(_ECHO_SCRIPT).run_turn(session=_session(), prompt="hello", on_event=on_event)

    assert lines == ['{"type": "text", "content": "HELLO"}', '{"type": "done", "stopReason": "end_turn"}']


@pytest.mark.asyncio
async def test_nonzero_exit_after_terminal_event_is_not_an_error() -> None:
    script = 'print(\'{"type": "done"}\'); raise SystemExit(1)'

    async def on_event(_line: str) -> None:
        return None

    await _runtime(script).run_turn(session=_session(), prompt="", on_event=on_event)


@pytest.mark.asyncio
async def test_control_error_on_stderr_becomes_runtime_error() -> None:
    script = (
        "import sys; "
        "sys.stderr.write('{\"error\": {\"message\": \"session missing\", \"code\": \"NO_SESSION\"}}\\n'); "
        "sys.exit(3)"
    )

    async def on_event(_line: str) -> None:
        return None

    with pytest.raises(AcpRuntimeError) as exc_info:
        await _runtime(script).run_turn(session=_session(), prompt="", on_event=on_event)

    assert exc_info.value.code == "NO_SESSION"
    assert exc_info.value.message == "session missing"


@pytest.mark.asyncio
async def test_plain_failure_includes_stderr_tail() -> None:
    script = "import sys; sys.stderr.write('kaboom'); sys.exit(2)"

    async def on_event(_line: str) -> None:
        return None

    with pytest.raises(AcpRuntimeError) as exc_info:
        await _runtime(script).run_turn(session=_session(), prompt="", on_event=on_event)

    assert exc_info.value.code == ACP_TURN_FAILED
    assert "exited with code 2" in exc_info.value.message
    assert "kaboom" in exc_info.value.message


@pytest.mark.asyncio
async def test_turn_timeout_kills_process() -> None:
    async def on_event(_line: str) -> None:
        return None

    with pytest.raises(AcpRuntimeError) as exc_info:
        await _runtime("import time; time.sleep(30)", turn_timeout_s=1).run_turn(
            session=_session(), prompt="", on_event=on_event
        )

    assert exc_info.value.code == ACP_TURN_TIMEOUT
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_missing_binary_is_backend_unavailable() -> None:
    runtime = SubprocessAcpRuntime(AcpRuntimeConfig(command=["/nonexistent/courier-acp"]))

    async def on_event(_line: str) -> None:
        return None

    with pytest.raises(AcpRuntimeError) as exc_info:
        await runtime.run_turn(session=_session(), prompt="", on_event=on_event)

    assert exc_info.value.code == ACP_BACKEND_UNAVAILABLE


@pytest.mark.asyncio
async def test_replay_runtime_skips_blank_lines(tmp_path) -> None:
    path = tmp_path / "turn.jsonl"
    path.write_text('{"type": "text", "content": "a"}\n\n{"type": "done"}\n', encoding="utf-8")
    lines: list[str] = []

    async def on_event(line: str) -> None:
        lines.append(line)

    runtime = JsonlReplayRuntime.from_path(path)
    await runtime.run_turn(session=_session(), prompt="", on_event=on_event)

    assert runtime.is_healthy() is True
    assert lines == ['{"type": "text", "content": "a"}', '{"type": "done"}']


@pytest.mark.asyncio
async def test_failing_event_handler_leaves_no_reader_tasks() -> None:
    script = 'import sys, time; print(\'{"type": "text", "content": "a"}\', flush=True); time.sleep(30)'

    async def on_event(line: str) -> None:
        raise ValueError("sink exploded")

    with pytest.raises(ValueError):
        await _runtime(script, turn_timeout_s=10).run_turn(session=_session(), prompt="", on_event=on_event)

    pending = [task for task in asyncio.all_tasks() if task is not asyncio.current_task() and not task.done()]
    assert pending == []
