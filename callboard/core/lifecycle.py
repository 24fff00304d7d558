"""State-changing operations on calls and establishments."""

import asyncio
import logging
from typing import Awaitable, Optional

from ..errors import CallboardError, InvalidTransition
from ..store.base import RemoteStore
from .domain import (
    ACTIVE_STATUSES,
    CallStatus,
    CallType,
    EstablishmentSettings,
    can_transition,
    sources_for,
)
from .escalation import now_millis
from .sync_engine import RefreshOutcome, SyncEngine

logger = logging.getLogger(__name__)


def _status_values(statuses) -> list:
    return [s.value for s in statuses]


class CallLifecycleController:
    """
    Issues call and establishment writes against the remote store.

    Every operation writes and then re-reads the establishment through the
    sync engine, whatever the write reported. The cache therefore reflects
    the remote state rather than an assumed result. Write failures are logged,
    not raised. Writes to an establishment the engine does not track are not
    cached; their refresh reports SKIPPED.

    There is no compare-and-swap: two staff members acting on the same call
    race, and the last write wins. Status filters on each update keep every
    move forward along the call lifecycle.
    """

    def __init__(self, store: RemoteStore, sync: SyncEngine):
        self.store = store
        self.sync = sync

    async def _write_then_refresh(
        self, establishment_id: str, description: str, write: Awaitable
    ) -> RefreshOutcome:
        try:
            await asyncio.wait_for(write, timeout=self.sync.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning("Write timed out (%s) for %s", description, establishment_id)
        except CallboardError as exc:
            logger.warning("Write failed (%s) for %s: %s", description, establishment_id, exc)
        return await self.sync.refresh(establishment_id)

    async def _transition(
        self,
        establishment_id: str,
        to_status: CallStatus,
        *,
        table_number: Optional[str] = None,
        call_id: Optional[str] = None,
        from_statuses=None,
    ) -> int:
        sources = list(from_statuses or sources_for(to_status))
        for status in sources:
            if not can_transition(status, to_status):
                raise InvalidTransition(f"{status.value} cannot move to {to_status.value}")

        where = {"establishment_id": establishment_id}
        if table_number is not None:
            where["table_number"] = str(table_number)
        if call_id is not None:
            where["id"] = call_id

        return await self.store.update(
            "calls",
            {"status": to_status.value},
            where=where,
            where_in={"status": _status_values(sources)},
        )

    # ==================== Calls ====================

    async def raise_call(
        self, establishment_id: str, table_number: str, call_type: CallType
    ) -> RefreshOutcome:
        """Insert a new SENT call. Identical calls are not merged."""
        write = self.store.insert(
            "calls",
            {
                "establishment_id": establishment_id,
                "table_number": str(table_number),
                "type": CallType(call_type).value,
                "status": CallStatus.SENT.value,
                "created_at_ts": now_millis(),
            },
        )
        return await self._write_then_refresh(establishment_id, "raise call", write)

    async def mark_viewed(self, establishment_id: str, table_number: str) -> RefreshOutcome:
        """Move every SENT call on the table to VIEWED."""
        write = self._transition(
            establishment_id,
            CallStatus.VIEWED,
            table_number=table_number,
            from_statuses=[CallStatus.SENT],
        )
        return await self._write_then_refresh(establishment_id, "mark viewed", write)

    async def _resolve_oldest(
        self,
        establishment_id: str,
        table_number: str,
        call_type: CallType,
        to_status: CallStatus,
    ) -> bool:
        rows = await self.store.select(
            "calls",
            where={
                "establishment_id": establishment_id,
                "table_number": str(table_number),
                "type": CallType(call_type).value,
            },
            where_in={"status": _status_values(ACTIVE_STATUSES)},
            order_by="created_at_ts",
            ascending=True,
            limit=1,
        )
        if not rows:
            return False

        updated = await self._transition(
            establishment_id,
            to_status,
            call_id=rows[0]["id"],
            from_statuses=ACTIVE_STATUSES,
        )
        return updated > 0

    async def attend_oldest(
        self, establishment_id: str, table_number: str, call_type: CallType
    ) -> RefreshOutcome:
        """Mark the oldest active call of ``call_type`` on the table as ATTENDED."""
        write = self._resolve_oldest(establishment_id, table_number, call_type, CallStatus.ATTENDED)
        return await self._write_then_refresh(establishment_id, "attend oldest", write)

    async def cancel_oldest(
        self, establishment_id: str, table_number: str, call_type: CallType
    ) -> RefreshOutcome:
        """Mark the oldest active call of ``call_type`` on the table as CANCELED."""
        write = self._resolve_oldest(establishment_id, table_number, call_type, CallStatus.CANCELED)
        return await self._write_then_refresh(establishment_id, "cancel oldest", write)

    async def close_table(self, establishment_id: str, table_number: str) -> RefreshOutcome:
        """Attend every active call on the table."""
        write = self._transition(
            establishment_id,
            CallStatus.ATTENDED,
            table_number=table_number,
            from_statuses=ACTIVE_STATUSES,
        )
        return await self._write_then_refresh(establishment_id, "close table", write)

    # ==================== Establishment ====================

    async def _close_workday_writes(self, establishment_id: str):
        await self.store.update("establishments", {"is_open": False}, where={"id": establishment_id})
        await self._transition(establishment_id, CallStatus.CANCELED, from_statuses=ACTIVE_STATUSES)

    async def close_workday(self, establishment_id: str) -> RefreshOutcome:
        """Close the establishment and cancel every active call it has."""
        write = self._close_workday_writes(establishment_id)
        return await self._write_then_refresh(establishment_id, "close workday", write)

    async def open_workday(self, establishment_id: str) -> RefreshOutcome:
        write = self.store.update("establishments", {"is_open": True}, where={"id": establishment_id})
        return await self._write_then_refresh(establishment_id, "open workday", write)

    async def update_settings(
        self, establishment_id: str, settings: EstablishmentSettings
    ) -> RefreshOutcome:
        """
        Replace the establishment thresholds.

        Raises:
            InvalidSettings: thresholds out of order or negative capacity
        """
        settings.validate()
        write = self.store.update(
            "establishments", {"settings": settings.to_json()}, where={"id": establishment_id}
        )
        return await self._write_then_refresh(establishment_id, "update settings", write)

    async def has_pending_calls(self, establishment_id: str) -> bool:
        """Whether any call of the establishment is still active."""
        try:
            pending = await asyncio.wait_for(
                self.store.count(
                    "calls",
                    where={"establishment_id": establishment_id},
                    where_in={"status": _status_values(ACTIVE_STATUSES)},
                ),
                timeout=self.sync.fetch_timeout,
            )
            return pending > 0
        except (asyncio.TimeoutError, CallboardError) as exc:
            logger.warning("Pending-call check for %s fell back to cache: %s", establishment_id, exc)
            cached = self.sync.cache.get(establishment_id)
            return bool(cached and cached.active_calls())
