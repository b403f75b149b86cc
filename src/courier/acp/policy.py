"""Dispatch and agent policy gates for ACP turns."""

from __future__ import annotations

from courier.acp.errors import (
    ACP_AGENT_NOT_ALLOWED,
    ACP_DISABLED,
    ACP_DISPATCH_DISABLED,
    AcpRuntimeError,
)
from courier.config import CourierConfig


def is_acp_dispatch_enabled(cfg: CourierConfig) -> bool:
    return cfg.acp.enabled and cfg.acp.dispatch.enabled


def resolve_dispatch_policy_error(cfg: CourierConfig) -> AcpRuntimeError | None:
    """Return why ACP dispatch is refused for this deployment, or None."""
    if not cfg.acp.enabled:
        return AcpRuntimeError(ACP_DISABLED, "ACP is disabled by policy (`acp.enabled=false`).")
    if not cfg.acp.dispatch.enabled:
        return AcpRuntimeError(
            ACP_DISPATCH_DISABLED,
            "ACP dispatch is disabled by policy (`acp.dispatch.enabled=false`).",
        )
    return None


def resolve_agent_policy_error(cfg: CourierConfig, agent: str) -> AcpRuntimeError | None:
    """Return why ``agent`` may not run turns, or None when it is allowed."""
    allowed = {item.strip().lower() for item in cfg.acp.allowed_agents if item.strip()}
    if not allowed:
        return None
    normalized = (agent or "").strip().lower()
    if normalized in allowed:
        return None
    return AcpRuntimeError(
        ACP_AGENT_NOT_ALLOWED,
        f"ACP agent `{normalized or '(unknown)'}` is not allowed by policy.",
    )
