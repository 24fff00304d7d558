"""Semaphore escalation for tables and call types.

Two independent paths raise urgency: the age of the oldest active call and the
number of simultaneous active calls of the same type. Either one alone can push
a table to YELLOW or RED.
"""

import time
from collections import Counter
from typing import Any, Dict, Iterable, Optional

from .domain import Call, CallType, Establishment, EstablishmentSettings, SemaphoreStatus, Table


def now_millis() -> int:
    return int(time.time() * 1000)


def _classify(
    elapsed_seconds: float, max_count: int, settings: EstablishmentSettings
) -> SemaphoreStatus:
    if elapsed_seconds > settings.time_yellow or max_count > settings.qty_yellow:
        return SemaphoreStatus.RED

    yellow_by_time = settings.time_green < elapsed_seconds <= settings.time_yellow
    yellow_by_qty = settings.qty_green < max_count <= settings.qty_yellow
    if yellow_by_time or yellow_by_qty:
        return SemaphoreStatus.YELLOW

    return SemaphoreStatus.GREEN


def _elapsed_seconds(calls: Iterable[Call], now_ms: int) -> float:
    oldest = min(calls, key=lambda c: c.created_at)
    # Clock skew can put created_at in the future.
    return max(0, now_ms - oldest.created_at) / 1000


def table_status(
    table: Table, settings: EstablishmentSettings, now_ms: Optional[int] = None
) -> SemaphoreStatus:
    """
    Urgency of a whole table.

    Args:
        table: Table with its calls (terminal calls are ignored)
        settings: Establishment thresholds
        now_ms: Reference time in epoch millis, defaults to the wall clock

    Returns:
        IDLE when nothing is active, otherwise GREEN, YELLOW or RED
    """
    active = table.active_calls()
    if not active:
        return SemaphoreStatus.IDLE

    now_ms = now_millis() if now_ms is None else now_ms
    max_count = max(Counter(c.type for c in active).values())
    return _classify(_elapsed_seconds(active, now_ms), max_count, settings)


def call_type_status(
    table: Table,
    call_type: CallType,
    settings: EstablishmentSettings,
    now_ms: Optional[int] = None,
) -> SemaphoreStatus:
    """
    Urgency of one call type on one table.

    Applies the same time and quantity thresholds as ``table_status``,
    restricted to the active calls of ``call_type``.
    """
    active = table.active_calls(call_type)
    if not active:
        return SemaphoreStatus.IDLE

    now_ms = now_millis() if now_ms is None else now_ms
    return _classify(_elapsed_seconds(active, now_ms), len(active), settings)


def establishment_statuses(
    establishment: Establishment, now_ms: Optional[int] = None
) -> Dict[str, Dict[str, Any]]:
    """Per-table status plus per-type statuses, keyed by table number."""
    now_ms = now_millis() if now_ms is None else now_ms
    settings = establishment.settings

    return {
        number: {
            "status": table_status(table, settings, now_ms),
            "by_type": {
                call_type: call_type_status(table, call_type, settings, now_ms)
                for call_type in CallType
            },
        }
        for number, table in establishment.tables.items()
    }
