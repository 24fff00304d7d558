"""Declarative base and async engine helpers."""

import uuid

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all remote-store models."""

    def to_dict(self) -> dict:
        """Column values keyed by column name."""
        return {column.name: getattr(self, column.key) for column in self.__table__.columns}


def new_id() -> str:
    return str(uuid.uuid4())


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine):
    """Create all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
