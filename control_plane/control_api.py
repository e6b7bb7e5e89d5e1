"""
Voice session API.

Exposes:
- POST   /api/voice/session                    create (or replace) the caller's session
- DELETE /api/voice/session/{session_id}       end a session
- POST   /api/voice/mute                       set the backend mute flag
- GET    /api/voice/session/{session_id}/status
- GET    /api/voice/sessions                   locally tracked sessions (monitoring)
- GET    /control/events                       recent audit events

Implementation notes:
- Ending a session never calls the provider; it only drops local state.
- Provisioning errors are surfaced with stable detail codes, no internal traces.
"""

from __future__ import annotations

import time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from logging_setup import get_logger, Component
from observability.event_store import event_store
from .errors import ConfigurationError, ProvisioningFailure, SessionNotFound
from .runtime import VoiceRuntime
from .session import EndReason


router = APIRouter(tags=["voice"])
logger = get_logger(Component.CONTROL_PLANE)


def get_runtime(request: Request) -> VoiceRuntime:
    return request.app.state.runtime


class CreateSessionRequest(BaseModel):
    userId: Optional[str] = Field(None, description="Owner id; generated when omitted")


class CreateSessionResponse(BaseModel):
    sessionId: str
    roomUrl: str
    token: str
    expiresAt: int = Field(..., description="Epoch milliseconds")
    remainingTime: int = Field(..., description="Milliseconds until the session expires")


class MuteRequest(BaseModel):
    sessionId: str = Field(..., min_length=1)
    isMuted: bool


class MuteResponse(BaseModel):
    success: bool
    isMuted: bool


class SessionStatus(BaseModel):
    active: bool
    remainingTime: Optional[int] = None
    isMuted: Optional[bool] = None


class SessionSummary(BaseModel):
    userId: str
    sessionId: str
    createdAt: float
    expiresAt: float
    isMuted: bool


@router.post("/api/voice/session", response_model=CreateSessionResponse)
async def create_voice_session(
    req: Optional[CreateSessionRequest] = None,
    runtime: VoiceRuntime = Depends(get_runtime),
) -> CreateSessionResponse:
    """
    Provision a voice session for userId, ending any session it already has.
    """
    owner_id = (req.userId if req else None) or f"user-{int(time.time() * 1000)}"

    try:
        session = await runtime.manager.create_session(owner_id)
    except ConfigurationError:
        logger.error("Voice session refused: provisioning not configured", owner_id=owner_id)
        raise HTTPException(status_code=503, detail="provisioning_not_configured")
    except ProvisioningFailure as e:
        logger.error("Voice session provisioning failed", owner_id=owner_id, category=e.category)
        raise HTTPException(status_code=502, detail="provisioning_failed")

    return CreateSessionResponse(
        sessionId=session.external_session_id,
        roomUrl=session.room_url,
        token=session.token,
        expiresAt=int(session.expires_at * 1000),
        remainingTime=runtime.manager.get_remaining_ms(owner_id),
    )


@router.delete("/api/voice/session/{session_id}")
async def end_voice_session(
    session_id: str,
    runtime: VoiceRuntime = Depends(get_runtime),
) -> dict:
    try:
        owner_id = runtime.manager.require_owner(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    runtime.manager.end_session(owner_id, EndReason.USER_INITIATED)
    return {"success": True}


@router.post("/api/voice/mute", response_model=MuteResponse)
async def mute_voice_session(
    req: MuteRequest,
    runtime: VoiceRuntime = Depends(get_runtime),
) -> MuteResponse:
    try:
        owner_id = runtime.manager.require_owner(req.sessionId)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    runtime.manager.set_muted(owner_id, req.isMuted)
    return MuteResponse(success=True, isMuted=req.isMuted)


@router.get(
    "/api/voice/session/{session_id}/status",
    response_model=SessionStatus,
    response_model_exclude_none=True,
)
async def voice_session_status(
    session_id: str,
    runtime: VoiceRuntime = Depends(get_runtime),
) -> SessionStatus:
    session = runtime.manager.get_session_by_external_id(session_id)
    if session is None:
        return SessionStatus(active=False)
    return SessionStatus(**runtime.manager.session_status(session.owner_id))


@router.get("/api/voice/sessions", response_model=List[SessionSummary])
async def list_voice_sessions(runtime: VoiceRuntime = Depends(get_runtime)) -> List[SessionSummary]:
    """Sessions tracked by this process (the provider offers no list operation)."""
    return [SessionSummary(**s.to_summary()) for s in runtime.manager.list_sessions()]


@router.get("/control/events")
async def query_events(
    owner_id: Optional[str] = Query(None, description="Filter by owner"),
    session_id: Optional[str] = Query(None, description="Filter by external session id"),
    event_type: Optional[str] = Query(None, description="Exact type, or prefix like 'webhook.*'"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
) -> dict:
    events = event_store.query(
        owner_id=owner_id,
        session_id=session_id,
        event_type=event_type,
        limit=limit,
    )
    return {"events": events, "count": len(events)}
