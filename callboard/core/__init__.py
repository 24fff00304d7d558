"""Core call synchronization and escalation engine."""

from .domain import (
    Call,
    CallStatus,
    CallType,
    CustomerProfile,
    Establishment,
    EstablishmentSettings,
    SemaphoreStatus,
    Table,
)
from .escalation import call_type_status, table_status
from .cache import EstablishmentCache
from .sync_engine import SyncEngine, RefreshOutcome
from .lifecycle import CallLifecycleController
from .favorites import FavoritesGuard
from .session import SessionManager

__all__ = [
    "Call",
    "CallStatus",
    "CallType",
    "CustomerProfile",
    "Establishment",
    "EstablishmentSettings",
    "SemaphoreStatus",
    "Table",
    "call_type_status",
    "table_status",
    "EstablishmentCache",
    "SyncEngine",
    "RefreshOutcome",
    "CallLifecycleController",
    "FavoritesGuard",
    "SessionManager",
]
