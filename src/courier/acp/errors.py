"""ACP error types."""

from __future__ import annotations

ACP_DISABLED = "ACP_DISABLED"
ACP_DISPATCH_DISABLED = "ACP_DISPATCH_DISABLED"
ACP_AGENT_NOT_ALLOWED = "ACP_AGENT_NOT_ALLOWED"
ACP_SESSION_INIT_FAILED = "ACP_SESSION_INIT_FAILED"
ACP_SESSION_LIMIT = "ACP_SESSION_LIMIT"
ACP_TURN_FAILED = "ACP_TURN_FAILED"
ACP_TURN_TIMEOUT = "ACP_TURN_TIMEOUT"
ACP_BACKEND_UNAVAILABLE = "ACP_BACKEND_UNAVAILABLE"


class AcpRuntimeError(Exception):
    """An ACP failure carrying a stable, user-visible code."""

    def __init__(self, code: str, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable

    def __repr__(self) -> str:
        return f"AcpRuntimeError(code={self.code!r}, message={self.message!r})"


def format_acp_error_text(code: str | None, message: str) -> str:
    """Render an error as the text of a final chat reply."""
    label = (code or "").strip() or ACP_TURN_FAILED
    text = message.strip() or "ACP turn failed."
    return f"ACP error ({label}): {text}"
