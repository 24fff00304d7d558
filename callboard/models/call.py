"""Call model for customer table requests."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, new_id


class Call(Base):
    """A request raised from a table."""

    __tablename__ = "calls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    establishment_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    table_number: Mapped[str] = mapped_column(String(20), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), index=True, nullable=False)
    created_at_ts: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch millis
