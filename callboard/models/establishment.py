"""Establishment model."""

from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, new_id


class Establishment(Base):
    """Restaurant owned by a profile with ESTABLISHMENT role."""

    __tablename__ = "establishments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Digits only, used as lookup key by customers
    phone: Mapped[str] = mapped_column(String(32), index=True, default="")
    photo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    phrase: Mapped[str] = mapped_column(String(500), default="")
    is_open: Mapped[bool] = mapped_column(Boolean, default=True)

    # {totalTables, timeGreen, timeYellow, qtyGreen, qtyYellow}
    settings: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
