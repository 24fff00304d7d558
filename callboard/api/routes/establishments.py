"""Establishment dashboard and management routes."""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ...core.domain import Establishment, EstablishmentSettings
from ...core.escalation import establishment_statuses, now_millis
from ...core.session import SessionManager
from ...errors import InvalidSettings, RemoteUnavailable
from ..deps import require_session

router = APIRouter(prefix="/establishments", tags=["establishments"])


class SettingsPayload(BaseModel):
    """Thresholds as edited in the settings form."""

    totalTables: int = Field(ge=0)
    timeGreen: int = Field(ge=0)
    timeYellow: int = Field(ge=0)
    qtyGreen: int = Field(ge=0)
    qtyYellow: int = Field(ge=0)

    def to_settings(self) -> EstablishmentSettings:
        return EstablishmentSettings(
            total_tables=self.totalTables,
            time_green=self.timeGreen,
            time_yellow=self.timeYellow,
            qty_green=self.qtyGreen,
            qty_yellow=self.qtyYellow,
        )


class CallResponse(BaseModel):
    id: str
    table_number: str
    type: str
    status: str
    created_at: int


class TableResponse(BaseModel):
    number: str
    status: str
    by_type: Dict[str, str]
    calls: List[CallResponse]


class DashboardResponse(BaseModel):
    """Cached establishment with its semaphores."""

    id: str
    owner_id: str
    name: str
    phone: str
    photo_url: Optional[str]
    phrase: str
    is_open: bool
    degraded: bool
    settings: Dict[str, int]
    generated_at: int
    tables: List[TableResponse]


def dashboard_snapshot(establishment: Establishment, now_ms: Optional[int] = None) -> dict:
    """Serialize an aggregate with per-table and per-type semaphores."""
    now_ms = now_millis() if now_ms is None else now_ms
    statuses = establishment_statuses(establishment, now_ms)

    return {
        "id": establishment.id,
        "owner_id": establishment.owner_id,
        "name": establishment.name,
        "phone": establishment.phone,
        "photo_url": establishment.photo_url,
        "phrase": establishment.phrase,
        "is_open": establishment.is_open,
        "degraded": establishment.degraded,
        "settings": establishment.settings.to_json(),
        "generated_at": now_ms,
        "tables": [
            {
                "number": number,
                "status": statuses[number]["status"].value,
                "by_type": {t.value: s.value for t, s in statuses[number]["by_type"].items()},
                "calls": [c.to_dict() for c in table.active_calls()],
            }
            for number, table in establishment.tables.items()
        ],
    }


def _require_tracked(sessions: SessionManager, establishment_id: str):
    if not sessions.sync.is_tracked(establishment_id):
        raise HTTPException(status_code=404, detail="Establishment not loaded")


def _cached_or_404(sessions: SessionManager, establishment_id: str) -> Establishment:
    establishment = sessions.cache.get(establishment_id)
    if establishment is None:
        raise HTTPException(status_code=404, detail="Establishment not loaded")
    return establishment


@router.get("/search", response_model=DashboardResponse)
async def search_by_phone(
    phone: str = Query(..., min_length=1),
    sessions: SessionManager = Depends(require_session),
):
    """Find an establishment by phone number; punctuation is ignored."""
    try:
        establishment = await sessions.find_establishment_by_phone(phone)
    except RemoteUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    if establishment is None:
        raise HTTPException(status_code=404, detail="Establishment not found")
    return DashboardResponse(**dashboard_snapshot(establishment))


@router.get("/{establishment_id}", response_model=DashboardResponse)
async def get_dashboard(
    establishment_id: str,
    sessions: SessionManager = Depends(require_session),
):
    """Cached dashboard; never waits on the remote store."""
    return DashboardResponse(**dashboard_snapshot(_cached_or_404(sessions, establishment_id)))


@router.put("/{establishment_id}/settings", response_model=DashboardResponse)
async def update_settings(
    establishment_id: str,
    payload: SettingsPayload,
    sessions: SessionManager = Depends(require_session),
):
    _require_tracked(sessions, establishment_id)
    try:
        await sessions.lifecycle.update_settings(establishment_id, payload.to_settings())
    except InvalidSettings as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return DashboardResponse(**dashboard_snapshot(_cached_or_404(sessions, establishment_id)))


@router.post("/{establishment_id}/workday/open", response_model=DashboardResponse)
async def open_workday(
    establishment_id: str,
    sessions: SessionManager = Depends(require_session),
):
    _require_tracked(sessions, establishment_id)
    await sessions.lifecycle.open_workday(establishment_id)
    return DashboardResponse(**dashboard_snapshot(_cached_or_404(sessions, establishment_id)))


@router.post("/{establishment_id}/workday/close", response_model=DashboardResponse)
async def close_workday(
    establishment_id: str,
    sessions: SessionManager = Depends(require_session),
):
    """Close the day; every active call is canceled."""
    _require_tracked(sessions, establishment_id)
    await sessions.lifecycle.close_workday(establishment_id)
    return DashboardResponse(**dashboard_snapshot(_cached_or_404(sessions, establishment_id)))


@router.get("/{establishment_id}/pending")
async def get_pending(
    establishment_id: str,
    sessions: SessionManager = Depends(require_session),
):
    """Whether active calls remain, checked before closing the day."""
    _require_tracked(sessions, establishment_id)
    pending = await sessions.lifecycle.has_pending_calls(establishment_id)
    return {"establishment_id": establishment_id, "pending": pending}
