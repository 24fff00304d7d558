"""Domain types for establishments, tables and calls."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..errors import InvalidSettings


class CallType(str, Enum):
    """Kinds of requests a customer can raise from a table."""

    WAITER = "WAITER"
    BILL = "BILL"
    ORDER = "ORDER"


class CallStatus(str, Enum):
    """Call lifecycle states."""

    SENT = "SENT"
    VIEWED = "VIEWED"
    ATTENDED = "ATTENDED"
    CANCELED = "CANCELED"


# Forward-only transitions. Viewing is optional.
VALID_TRANSITIONS = {
    CallStatus.SENT: [CallStatus.VIEWED, CallStatus.ATTENDED, CallStatus.CANCELED],
    CallStatus.VIEWED: [CallStatus.ATTENDED, CallStatus.CANCELED],
    CallStatus.ATTENDED: [],
    CallStatus.CANCELED: [],
}

ACTIVE_STATUSES = (CallStatus.SENT, CallStatus.VIEWED)


def can_transition(from_status: CallStatus, to_status: CallStatus) -> bool:
    """Check if a call may move from one status to another."""
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def sources_for(to_status: CallStatus) -> List[CallStatus]:
    """Statuses from which ``to_status`` is reachable in one step."""
    return [s for s, targets in VALID_TRANSITIONS.items() if to_status in targets]


class SemaphoreStatus(str, Enum):
    """Urgency signal shown for a table or a call type."""

    IDLE = "IDLE"
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"

    @property
    def rank(self) -> int:
        return _SEMAPHORE_RANK[self]


_SEMAPHORE_RANK = {
    SemaphoreStatus.IDLE: 0,
    SemaphoreStatus.GREEN: 1,
    SemaphoreStatus.YELLOW: 2,
    SemaphoreStatus.RED: 3,
}


class Role(str, Enum):
    ADMIN = "ADMIN"
    ESTABLISHMENT = "ESTABLISHMENT"
    CUSTOMER = "CUSTOMER"


class UserStatus(str, Enum):
    TESTING = "TESTING"
    ACTIVE = "ACTIVE"
    DISCONNECTED = "DISCONNECTED"


def normalize_phone(phone: Optional[str]) -> str:
    """Strip everything but digits; phones are stored and looked up this way."""
    return re.sub(r"\D", "", phone or "")


@dataclass(frozen=True)
class Call:
    """A single customer request."""

    id: str
    establishment_id: str
    table_number: str
    type: CallType
    status: CallStatus
    created_at: int  # epoch millis

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Call":
        return cls(
            id=str(record["id"]),
            establishment_id=str(record["establishment_id"]),
            table_number=str(record["table_number"]),
            type=CallType(record["type"]),
            status=CallStatus(record["status"]),
            created_at=int(record["created_at_ts"]),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "table_number": self.table_number,
            "type": self.type.value,
            "status": self.status.value,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class Table:
    """A physical table and every call it has received."""

    number: str
    calls: Tuple[Call, ...] = ()

    def active_calls(self, call_type: Optional[CallType] = None) -> List[Call]:
        return [
            c
            for c in self.calls
            if c.is_active and (call_type is None or c.type == call_type)
        ]


@dataclass(frozen=True)
class EstablishmentSettings:
    """Per-establishment thresholds and capacity."""

    total_tables: int
    time_green: int  # seconds
    time_yellow: int  # seconds
    qty_green: int
    qty_yellow: int

    def validate(self) -> "EstablishmentSettings":
        if self.total_tables < 0:
            raise InvalidSettings("totalTables must not be negative")
        if self.time_green > self.time_yellow:
            raise InvalidSettings("timeGreen must not exceed timeYellow")
        if self.qty_green > self.qty_yellow:
            raise InvalidSettings("qtyGreen must not exceed qtyYellow")
        return self

    @classmethod
    def from_json(
        cls, data: Optional[Mapping[str, Any]], default: "EstablishmentSettings"
    ) -> "EstablishmentSettings":
        """Read the remote camelCase JSON, falling back field by field."""
        if not data:
            return default
        try:
            return cls(
                total_tables=int(data.get("totalTables") or default.total_tables),
                time_green=int(data.get("timeGreen", default.time_green)),
                time_yellow=int(data.get("timeYellow", default.time_yellow)),
                qty_green=int(data.get("qtyGreen", default.qty_green)),
                qty_yellow=int(data.get("qtyYellow", default.qty_yellow)),
            ).validate()
        except (TypeError, ValueError, InvalidSettings):
            return default

    def to_json(self) -> Dict[str, int]:
        return {
            "totalTables": self.total_tables,
            "timeGreen": self.time_green,
            "timeYellow": self.time_yellow,
            "qtyGreen": self.qty_green,
            "qtyYellow": self.qty_yellow,
        }


def _table_sort_key(number: str):
    return (0, int(number), number) if number.isdecimal() else (1, 0, number)


def build_tables(total_tables: int, calls: Iterable[Call]) -> Dict[str, Table]:
    """
    Group calls by table and add the empty declared slots.

    The result has one entry for each of "1".."total_tables" plus any other
    table number found on a call, ordered by table number.
    """
    grouped: Dict[str, List[Call]] = {str(i): [] for i in range(1, total_tables + 1)}
    for call in calls:
        grouped.setdefault(call.table_number, []).append(call)

    return {
        number: Table(number=number, calls=tuple(grouped[number]))
        for number in sorted(grouped, key=_table_sort_key)
    }


@dataclass(frozen=True)
class OwnerIdentity:
    """What a session knows about an establishment's owner."""

    user_id: str
    name: str


@dataclass(frozen=True)
class Establishment:
    """Cached aggregate of an establishment, its tables and their calls."""

    id: str
    owner_id: str
    name: str
    phone: str
    photo_url: Optional[str]
    phrase: str
    settings: EstablishmentSettings
    tables: Mapping[str, Table]
    is_open: bool = True
    degraded: bool = False

    def table(self, number: str) -> Optional[Table]:
        return self.tables.get(str(number))

    def active_calls(self) -> List[Call]:
        return [c for t in self.tables.values() for c in t.active_calls()]

    @classmethod
    def from_records(
        cls,
        record: Mapping[str, Any],
        call_records: Iterable[Mapping[str, Any]],
        default_settings: EstablishmentSettings,
    ) -> "Establishment":
        settings = EstablishmentSettings.from_json(record.get("settings"), default_settings)
        calls = [Call.from_record(r) for r in call_records]
        return cls(
            id=str(record["id"]),
            owner_id=str(record["owner_id"]),
            name=record.get("name") or "",
            phone=normalize_phone(record.get("phone")),
            photo_url=record.get("photo_url"),
            phrase=record.get("phrase") or "",
            settings=settings,
            tables=build_tables(settings.total_tables, calls),
            is_open=record.get("is_open") is not False,
        )

    @classmethod
    def placeholder(
        cls,
        establishment_id: str,
        owner: OwnerIdentity,
        default_settings: EstablishmentSettings,
    ) -> "Establishment":
        """Minimal aggregate used when the owner's establishment cannot be loaded."""
        return cls(
            id=establishment_id,
            owner_id=owner.user_id,
            name=owner.name,
            phone="",
            photo_url=None,
            phrase="",
            settings=default_settings,
            tables=build_tables(default_settings.total_tables, ()),
            is_open=True,
            degraded=True,
        )


@dataclass(frozen=True)
class CustomerProfile:
    user_id: str
    favorite_establishment_ids: Tuple[str, ...] = ()
    phone: Optional[str] = None
    cep: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "favorite_establishment_ids": list(self.favorite_establishment_ids),
            "phone": self.phone,
            "cep": self.cep,
        }


@dataclass
class UserProfile:
    """Signed-in user as seen by the session."""

    id: str
    email: str
    role: Role
    name: str
    status: UserStatus = UserStatus.TESTING
    establishment_id: Optional[str] = None
    degraded: bool = False

    @classmethod
    def from_record(cls, record: Mapping[str, Any], email: str) -> "UserProfile":
        return cls(
            id=str(record["id"]),
            email=record.get("email") or email,
            role=Role(record["role"]),
            name=record.get("name") or "",
            status=UserStatus(record.get("status") or UserStatus.TESTING.value),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "name": self.name,
            "status": self.status.value,
            "establishment_id": self.establishment_id,
            "degraded": self.degraded,
        }
