"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

_NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx")


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure structlog for Courier.

    ``fmt`` is ``"json"`` for machine-readable lines or ``"console"`` for a
    colored developer view. Stdlib loggers (uvicorn, httpx) are routed through
    the same renderer.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == "console":
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def bound_turn(*, session_key: str, channel: str | None = None) -> Iterator[None]:
    """Attach turn identity to every log line emitted inside the block."""
    tokens = structlog.contextvars.bind_contextvars(
        session_key=session_key,
        channel=channel or "",
    )
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
