"""Customer favorites and contact details."""

from typing import Optional

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, new_id


class CustomerFavorite(Base):
    """Establishment bookmarked by a customer."""

    __tablename__ = "customer_favorites"
    __table_args__ = (UniqueConstraint("user_id", "establishment_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    establishment_id: Mapped[str] = mapped_column(String(36), nullable=False)


class CustomerDetails(Base):
    """Optional contact fields for a customer."""

    __tablename__ = "customer_details"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    cep: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
