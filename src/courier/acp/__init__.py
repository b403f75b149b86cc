"""ACP runtime protocol: events, projection, sessions and policy."""

from courier.acp.errors import AcpRuntimeError
from courier.acp.events import DoneEvent, ErrorEvent, RuntimeEvent, StatusEvent, TextDelta, ToolCallEvent
from courier.acp.projector import coerce_runtime_event, parse_prompt_event_line
from courier.acp.runtime import AcpRuntime, JsonlReplayRuntime, SubprocessAcpRuntime
from courier.acp.session import AcpSessionManager, AcpSessionMeta, SessionResolution

__all__ = [
    "AcpRuntime",
    "AcpRuntimeError",
    "AcpSessionManager",
    "AcpSessionMeta",
    "DoneEvent",
    "ErrorEvent",
    "JsonlReplayRuntime",
    "RuntimeEvent",
    "SessionResolution",
    "StatusEvent",
    "SubprocessAcpRuntime",
    "TextDelta",
    "ToolCallEvent",
    "coerce_runtime_event",
    "parse_prompt_event_line",
]
