from __future__ import annotations

from courier.acp.errors import (
    ACP_AGENT_NOT_ALLOWED,
    ACP_DISABLED,
    ACP_DISPATCH_DISABLED,
    AcpRuntimeError,
    format_acp_error_text,
)
from courier.acp.policy import is_acp_dispatch_enabled, resolve_agent_policy_error, resolve_dispatch_policy_error
from courier.config import AcpConfig, AcpDispatchConfig, CourierConfig


def test_dispatch_policy_allows_by_default() -> None:
    cfg = CourierConfig(acp=AcpConfig())

    assert resolve_dispatch_policy_error(cfg) is None
    assert is_acp_dispatch_enabled(cfg) is True


def test_global_disable_wins_over_dispatch_flag() -> None:
    cfg = CourierConfig(acp=AcpConfig(enabled=False, dispatch=AcpDispatchConfig(enabled=False)))

    error = resolve_dispatch_policy_error(cfg)

    assert error.code == ACP_DISABLED
    assert is_acp_dispatch_enabled(cfg) is False


def test_dispatch_disable() -> None:
    cfg = CourierConfig(acp=AcpConfig(dispatch=AcpDispatchConfig(enabled=False)))

    assert resolve_dispatch_policy_error(cfg).code == ACP_DISPATCH_DISABLED


def test_agent_allowlist_is_case_insensitive() -> None:
    cfg = CourierConfig(acp=AcpConfig(allowed_agents=["Codex", " claude "]))

    assert resolve_agent_policy_error(cfg, "codex") is None
    assert resolve_agent_policy_error(cfg, "CLAUDE") is None
    error = resolve_agent_policy_error(cfg, "gemini")
    assert error.code == ACP_AGENT_NOT_ALLOWED
    assert "gemini" in error.message


def test_empty_allowlist_allows_every_agent() -> None:
    cfg = CourierConfig(acp=AcpConfig(allowed_agents=[]))

    assert resolve_agent_policy_error(cfg, "anything") is None


def test_error_text_format() -> None:
    assert format_acp_error_text("ACP_TURN_TIMEOUT", "took too long") == "ACP error (ACP_TURN_TIMEOUT): took too long"
    assert format_acp_error_text(None, "x") == "ACP error (ACP_TURN_FAILED): x"
    assert format_acp_error_text("", "  ") == "ACP error (ACP_TURN_FAILED): ACP turn failed."


def test_runtime_error_carries_code() -> None:
    error = AcpRuntimeError("ACP_SESSION_LIMIT", "full", retryable=True)

    assert str(error) == "full"
    assert error.code == "ACP_SESSION_LIMIT"
    assert error.retryable is True
