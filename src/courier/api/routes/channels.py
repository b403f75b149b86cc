"""Channel status endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from courier.api.middleware.auth import verify_api_key
from courier.channels.base import ChannelStatus

router = APIRouter()


def channel_status_dict(status: ChannelStatus) -> dict:
    return {
        "channel": status.channel,
        "mode": status.mode,
        "enabled": status.enabled,
        "running": status.running,
        "last_error": status.last_error,
        "last_inbound_at": status.last_inbound_at,
        "last_outbound_at": status.last_outbound_at,
    }


@router.get("/v1/channels/status")
async def list_channel_status(
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> dict:
    manager = request.app.state.channel_manager
    thread_cache = manager.thread_cache
    return {
        "channels": [channel_status_dict(status) for status in manager.statuses()],
        "thread_cache": {
            "entries": len(thread_cache),
            "max_entries": thread_cache.max_entries,
        },
    }
