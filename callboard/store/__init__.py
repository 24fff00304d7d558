"""Remote record store access."""

from .base import COLLECTIONS, RemoteStore
from .sqlalchemy_store import SqlAlchemyRemoteStore

__all__ = ["COLLECTIONS", "RemoteStore", "SqlAlchemyRemoteStore"]
