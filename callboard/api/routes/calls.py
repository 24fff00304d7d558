"""Call routes for a single table."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ...core.domain import CallType
from ...core.session import SessionManager
from ..deps import require_session
from .establishments import (
    DashboardResponse,
    _cached_or_404,
    _require_tracked,
    dashboard_snapshot,
)

router = APIRouter(
    prefix="/establishments/{establishment_id}/tables/{table_number}",
    tags=["calls"],
)


class CallRequest(BaseModel):
    """Call type chosen by the customer or staff member."""

    type: CallType


def _dashboard(sessions: SessionManager, establishment_id: str) -> DashboardResponse:
    return DashboardResponse(**dashboard_snapshot(_cached_or_404(sessions, establishment_id)))


@router.post("/calls", response_model=DashboardResponse)
async def raise_call(
    establishment_id: str,
    table_number: str,
    payload: CallRequest,
    sessions: SessionManager = Depends(require_session),
):
    """Raise a new call from the table."""
    _require_tracked(sessions, establishment_id)
    await sessions.lifecycle.raise_call(establishment_id, table_number, payload.type)
    return _dashboard(sessions, establishment_id)


@router.post("/view", response_model=DashboardResponse)
async def mark_viewed(
    establishment_id: str,
    table_number: str,
    sessions: SessionManager = Depends(require_session),
):
    _require_tracked(sessions, establishment_id)
    await sessions.lifecycle.mark_viewed(establishment_id, table_number)
    return _dashboard(sessions, establishment_id)


@router.post("/attend", response_model=DashboardResponse)
async def attend_oldest(
    establishment_id: str,
    table_number: str,
    payload: CallRequest,
    sessions: SessionManager = Depends(require_session),
):
    """Attend the oldest active call of the given type."""
    _require_tracked(sessions, establishment_id)
    await sessions.lifecycle.attend_oldest(establishment_id, table_number, payload.type)
    return _dashboard(sessions, establishment_id)


@router.post("/cancel", response_model=DashboardResponse)
async def cancel_oldest(
    establishment_id: str,
    table_number: str,
    payload: CallRequest,
    sessions: SessionManager = Depends(require_session),
):
    _require_tracked(sessions, establishment_id)
    await sessions.lifecycle.cancel_oldest(establishment_id, table_number, payload.type)
    return _dashboard(sessions, establishment_id)


@router.post("/close", response_model=DashboardResponse)
async def close_table(
    establishment_id: str,
    table_number: str,
    sessions: SessionManager = Depends(require_session),
):
    """Attend every active call on the table."""
    _require_tracked(sessions, establishment_id)
    await sessions.lifecycle.close_table(establishment_id, table_number)
    return _dashboard(sessions, establishment_id)
