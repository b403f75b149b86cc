"""ACP turn and session endpoints."""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from courier.api.middleware.auth import verify_api_key
from courier.gateway import InboundEvent

logger = structlog.get_logger()

router = APIRouter()


class TurnRequest(BaseModel):
    prompt: str
    session_key: str | None = Field(default=None, description="Reuse an ACP session; a new one is bound when omitted")
    agent: str | None = Field(default=None, description="Agent for a newly bound session")
    output_target: str | None = Field(
        default=None,
        description="Also deliver replies to a target such as 'telegram:123' or 'webhook:https://...'",
    )
    inbound_audio: bool = False


class TurnResponse(BaseModel):
    session_key: str
    handled: bool
    text: str
    replies: list[dict[str, Any]]
    counts: dict[str, int]
    queued_final: bool = False
    stop_reason: str | None = None
    error_code: str | None = None


@router.post("/v1/acp/turns", response_model=TurnResponse)
async def run_turn(
    body: TurnRequest,
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> TurnResponse:
    if not body.prompt.strip():
        raise HTTPException(status_code=400, detail="prompt must not be empty")

    session_key = (body.session_key or "").strip() or f"api:{uuid.uuid4().hex[:12]}"
    gateway = request.app.state.event_gateway
    processed = await gateway.handle_event(
        InboundEvent(
            channel="api",
            session_key=session_key,
            sender_id="api",
            peer_id="api",
            text=body.prompt,
            agent=body.agent,
            inbound_audio=body.inbound_audio,
            output_target=body.output_target,
        )
    )
    logger.info("api.acp.turn", session_key=session_key, error_code=processed.error_code)

    return TurnResponse(
        session_key=processed.session_key,
        handled=processed.handled,
        text=processed.response_text,
        replies=[reply.to_dict() for reply in processed.replies],
        counts=dict(processed.counts),
        queued_final=processed.queued_final,
        stop_reason=processed.stop_reason,
        error_code=processed.error_code,
    )


@router.get("/v1/acp/sessions")
async def list_sessions(
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> dict:
    session_manager = request.app.state.session_manager
    return {
        "sessions": [
            {
                "session_key": key,
                "agent": meta.agent,
                "backend": meta.backend,
                "mode": meta.mode,
                "state": meta.state,
                "runtime_session_name": meta.runtime_session_name,
                "last_activity_at": meta.last_activity_at,
                "last_error": meta.last_error,
            }
            for key, meta in session_manager.sessions().items()
        ],
        "observability": session_manager.observability_snapshot(),
    }


@router.delete("/v1/acp/sessions/{session_key}")
async def close_session(
    session_key: str,
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> dict:
    if not request.app.state.session_manager.close_session(session_key):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"deleted": True, "session_key": session_key}
