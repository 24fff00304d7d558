"""Session routes: hand the signed-in user over to the engine."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ...core.session import SessionManager
from ...errors import RemoteUnavailable
from ..deps import get_session_manager

router = APIRouter(prefix="/session", tags=["session"])


class SessionStart(BaseModel):
    """Identity of an already authenticated user."""

    user_id: str
    email: str


class SessionResponse(BaseModel):
    id: str
    email: str
    role: str
    name: str
    status: str
    establishment_id: Optional[str]
    degraded: bool


@router.post("", response_model=SessionResponse)
async def start_session(
    payload: SessionStart,
    sessions: SessionManager = Depends(get_session_manager),
):
    """Start a session; replaces any session already running."""
    try:
        user = await sessions.sign_in(payload.user_id, payload.email)
    except RemoteUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return SessionResponse(**user.to_dict())


@router.get("", response_model=SessionResponse)
async def get_session(sessions: SessionManager = Depends(get_session_manager)):
    if sessions.current_user is None:
        raise HTTPException(status_code=401, detail="No user is signed in")
    return SessionResponse(**sessions.current_user.to_dict())


@router.delete("")
async def end_session(sessions: SessionManager = Depends(get_session_manager)):
    await sessions.sign_out()
    return {"status": "signed_out"}
