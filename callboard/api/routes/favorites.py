"""Customer favorites routes."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ...core.domain import Role
from ...core.session import SessionManager
from ...errors import FavoritesLimitExceeded, RemoteUnavailable
from ..deps import require_session

router = APIRouter(prefix="/favorites", tags=["favorites"])


class ProfileResponse(BaseModel):
    user_id: str
    favorite_establishment_ids: List[str]
    phone: Optional[str]
    cep: Optional[str]


def _require_customer(sessions: SessionManager):
    if sessions.current_user.role != Role.CUSTOMER:
        raise HTTPException(status_code=403, detail="Only customers hold favorites")


@router.get("", response_model=ProfileResponse)
async def get_favorites(sessions: SessionManager = Depends(require_session)):
    _require_customer(sessions)
    return ProfileResponse(**sessions.customer_profile.to_dict())


@router.post("/{establishment_id}", response_model=ProfileResponse)
async def add_favorite(
    establishment_id: str,
    sessions: SessionManager = Depends(require_session),
):
    """Favorite an establishment; re-adding one is a no-op."""
    _require_customer(sessions)
    try:
        profile = await sessions.add_favorite(establishment_id)
    except FavoritesLimitExceeded as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except RemoteUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return ProfileResponse(**profile.to_dict())


@router.delete("/{establishment_id}", response_model=ProfileResponse)
async def remove_favorite(
    establishment_id: str,
    sessions: SessionManager = Depends(require_session),
):
    _require_customer(sessions)
    try:
        profile = await sessions.remove_favorite(establishment_id)
    except RemoteUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return ProfileResponse(**profile.to_dict())
