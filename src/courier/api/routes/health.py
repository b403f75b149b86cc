"""Health check endpoint."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

from courier.api.routes.channels import channel_status_dict

router = APIRouter()

_start_time = time.time()


@router.get("/health")
async def health(request: Request) -> dict:
    """Health check: uptime, ACP backend state and channel statuses."""
    config = request.app.state.config
    session_manager = request.app.state.session_manager
    channel_manager = getattr(request.app.state, "channel_manager", None)

    channels = [channel_status_dict(status) for status in channel_manager.statuses()] if channel_manager else []
    snapshot = session_manager.observability_snapshot()

    return {
        "status": "ok" if snapshot["backend_healthy"] else "degraded",
        "version": "0.1.0",
        "uptime_seconds": round(time.time() - _start_time, 1),
        "acp": {
            "enabled": config.acp.enabled,
            "dispatch_enabled": config.acp.dispatch.enabled,
            "backend": snapshot["backend"],
            "backend_healthy": snapshot["backend_healthy"],
            "default_agent": config.acp.default_agent,
            "active_sessions": snapshot["runtime_cache"]["active_sessions"],
        },
        "channels": channels,
    }
