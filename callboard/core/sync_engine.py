"""Keeps the establishment cache in step with the remote store."""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from ..errors import EstablishmentNotFound, RemoteTimeout, RemoteUnavailable
from ..store.base import Record, RemoteStore, Unsubscribe
from .cache import EstablishmentCache
from .domain import Establishment, EstablishmentSettings, OwnerIdentity

logger = logging.getLogger(__name__)


class RefreshTrigger(str, Enum):
    """What asked for a refresh cycle."""

    TIMER = "timer"
    MANUAL = "manual"
    PUSH = "push"


class RefreshOutcome(str, Enum):
    """How a refresh request ended."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    SERVED_STALE = "served_stale"
    PLACEHOLDER = "placeholder"
    FAILED = "failed"


class SyncEngine:
    """
    Refreshes tracked establishments from the remote store.

    Three producers feed the same refresh path:
    - a fixed-interval timer while the engine is running
    - explicit ``refresh()`` calls issued after writes
    - change notifications from the store, used only as a signal to re-fetch

    At most one cycle per establishment is in flight. A timer tick that finds
    a cycle running is dropped. A manual or push request that finds one
    running joins the single follow-up cycle queued behind it, so a write made
    before the request is always observed. Each caller waits for at most the
    running cycle and its follow-up.

    Only tracked establishments are cached. A cycle whose establishment was
    untracked, or whose engine was stopped, while it fetched discards its
    result.

    Failed or timed-out fetches never raise: the cached aggregate is kept, or,
    for an owner with nothing cached, a degraded placeholder is stored.
    """

    def __init__(
        self,
        store: RemoteStore,
        cache: EstablishmentCache,
        default_settings: EstablishmentSettings,
        poll_interval: float = 5.0,
        fetch_timeout: float = 8.0,
    ):
        self.store = store
        self.cache = cache
        self.default_settings = default_settings
        self.poll_interval = poll_interval
        self.fetch_timeout = fetch_timeout

        # Tracked establishments; owner identity is set for the owner's own
        self._tracked: Dict[str, Optional[OwnerIdentity]] = {}
        self._unsubscribers: Dict[str, Unsubscribe] = {}

        # Re-entrancy guard: completion future of the cycle in flight, and of
        # the follow-up cycle queued behind it
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._follow_ups: Dict[str, asyncio.Future] = {}

        self._running = False
        self._timer_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._refresh_handlers: List[Callable] = []

    # ==================== Tracking ====================

    def track(self, establishment_id: str, owner: Optional[OwnerIdentity] = None):
        """Include an establishment in timer refreshes and listen for its changes."""
        if owner is not None or establishment_id not in self._tracked:
            self._tracked[establishment_id] = owner
        if establishment_id not in self._unsubscribers:
            self._unsubscribers[establishment_id] = self.store.subscribe(
                establishment_id, self._on_remote_change
            )

    def untrack(self, establishment_id: str, drop_cached: bool = False):
        self._tracked.pop(establishment_id, None)
        unsubscribe = self._unsubscribers.pop(establishment_id, None)
        if unsubscribe:
            unsubscribe()
        if drop_cached:
            self.cache.invalidate(establishment_id)

    def is_tracked(self, establishment_id: str) -> bool:
        return establishment_id in self._tracked

    @property
    def tracked_ids(self) -> List[str]:
        return list(self._tracked)

    def is_fetching(self, establishment_id: str) -> bool:
        return establishment_id in self._in_flight

    # ==================== Lifecycle ====================

    def start(self):
        """Start the polling timer."""
        if self._running:
            return
        self._running = True
        self._timer_task = asyncio.create_task(self._run_timer())
        logger.info("Sync engine started (interval=%ss)", self.poll_interval)

    async def stop(self):
        """
        Stop polling and drop every tracked establishment.

        Background refreshes are cancelled. Refreshes awaited directly by
        callers finish their fetch but no longer write the cache.
        """
        self._running = False
        self._tracked.clear()
        for establishment_id in list(self._unsubscribers):
            self._unsubscribers.pop(establishment_id)()

        pending = list(self._tasks)
        if self._timer_task is not None:
            pending.append(self._timer_task)
            self._timer_task = None
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Sync engine stopped")

    @property
    def running(self) -> bool:
        return self._running

    async def _run_timer(self):
        while self._running:
            try:
                for establishment_id in list(self._tracked):
                    self._spawn(establishment_id, RefreshTrigger.TIMER)
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break

    def _keep(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _spawn(self, establishment_id: str, trigger: RefreshTrigger) -> asyncio.Task:
        return self._keep(asyncio.create_task(self.refresh(establishment_id, trigger=trigger)))

    def request_refresh(self, establishment_id: str) -> Optional[asyncio.Task]:
        """Schedule a refresh without waiting for it."""
        if establishment_id not in self._tracked:
            return None
        return self._spawn(establishment_id, RefreshTrigger.PUSH)

    def _on_remote_change(self, payload: Record):
        # The payload is never applied; it only schedules a re-fetch.
        establishment_id = payload.get("establishment_id")
        if establishment_id in self._tracked:
            logger.debug("Change on %s: %s", establishment_id, payload.get("event"))
            self.request_refresh(establishment_id)

    # ==================== Refresh ====================

    async def refresh(
        self, establishment_id: str, trigger: RefreshTrigger = RefreshTrigger.MANUAL
    ) -> RefreshOutcome:
        """
        Refresh a tracked establishment.

        Untracked establishments are SKIPPED without touching the store, as
        is a timer tick that finds a cycle in flight. Any other request that
        finds a cycle in flight waits for the follow-up cycle queued behind
        it. Never raises for remote failures.
        """
        if establishment_id not in self._tracked:
            logger.debug("Refresh of untracked %s skipped", establishment_id)
            return RefreshOutcome.SKIPPED

        if establishment_id in self._in_flight:
            if trigger is RefreshTrigger.TIMER:
                return RefreshOutcome.SKIPPED
            follow_up = self._follow_ups.get(establishment_id)
            if follow_up is None:
                follow_up = asyncio.get_running_loop().create_future()
                self._follow_ups[establishment_id] = follow_up
            logger.debug(
                "Refresh of %s deferred (%s): cycle in flight", establishment_id, trigger.value
            )
            return await asyncio.shield(follow_up)

        done = asyncio.get_running_loop().create_future()
        self._in_flight[establishment_id] = done
        return await self._run_cycle(establishment_id, done)

    async def _run_cycle(self, establishment_id: str, done: asyncio.Future) -> RefreshOutcome:
        outcome = RefreshOutcome.FAILED
        try:
            outcome = await self._cycle(establishment_id)
            return outcome
        except asyncio.CancelledError:
            outcome = RefreshOutcome.SKIPPED
            raise
        finally:
            if self._in_flight.get(establishment_id) is done:
                del self._in_flight[establishment_id]
            if not done.done():
                done.set_result(outcome)
            self._start_follow_up(establishment_id)

    def _start_follow_up(self, establishment_id: str):
        follow_up = self._follow_ups.pop(establishment_id, None)
        if follow_up is None:
            return
        if establishment_id not in self._tracked:
            follow_up.set_result(RefreshOutcome.SKIPPED)
            return

        # Claimed before the task starts so no other caller slips in between
        self._in_flight[establishment_id] = follow_up
        task = self._keep(asyncio.create_task(self._run_cycle(establishment_id, follow_up)))

        def release(_task):
            # Covers a task cancelled before it ever ran
            if self._in_flight.get(establishment_id) is follow_up:
                del self._in_flight[establishment_id]
            if not follow_up.done():
                follow_up.set_result(RefreshOutcome.SKIPPED)

        task.add_done_callback(release)

    async def _cycle(self, establishment_id: str) -> RefreshOutcome:
        try:
            aggregate = await asyncio.wait_for(
                self._fetch(establishment_id), timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError:
            return await self._degrade(
                establishment_id,
                RemoteTimeout(f"fetch exceeded {self.fetch_timeout}s"),
            )
        except (RemoteUnavailable, EstablishmentNotFound) as exc:
            return await self._degrade(establishment_id, exc)
        except (KeyError, ValueError) as exc:
            # Malformed remote record
            return await self._degrade(establishment_id, exc)

        if establishment_id not in self._tracked:
            logger.debug("Discarding refresh of %s: no longer tracked", establishment_id)
            return RefreshOutcome.SKIPPED

        self.cache.put(establishment_id, aggregate)
        logger.debug(
            "Refreshed %s: %d tables, %d active calls",
            establishment_id,
            len(aggregate.tables),
            len(aggregate.active_calls()),
        )
        await self._notify(establishment_id)
        return RefreshOutcome.APPLIED

    async def _fetch(self, establishment_id: str) -> Establishment:
        record = await self.store.select_one("establishments", where={"id": establishment_id})
        if record is None:
            raise EstablishmentNotFound(establishment_id)

        calls = await self.store.select(
            "calls", where={"establishment_id": establishment_id}
        )
        return Establishment.from_records(record, calls, self.default_settings)

    async def _degrade(self, establishment_id: str, error: Exception) -> RefreshOutcome:
        if establishment_id not in self._tracked:
            logger.debug("Refresh of %s failed after it was untracked: %s", establishment_id, error)
            return RefreshOutcome.SKIPPED

        if self.cache.get(establishment_id) is not None:
            logger.warning("Refresh of %s failed, serving stale data: %s", establishment_id, error)
            return RefreshOutcome.SERVED_STALE

        owner = self._tracked[establishment_id]
        if owner is None:
            logger.warning("Refresh of %s failed with nothing cached: %s", establishment_id, error)
            return RefreshOutcome.FAILED

        logger.warning(
            "Refresh of %s failed, using placeholder for owner %s: %s",
            establishment_id,
            owner.user_id,
            error,
        )
        placeholder = Establishment.placeholder(establishment_id, owner, self.default_settings)
        self.cache.put(establishment_id, placeholder)
        await self._notify(establishment_id)
        return RefreshOutcome.PLACEHOLDER

    # ==================== Listeners ====================

    def on_refresh(self, handler: Callable):
        """Register a callback invoked with the establishment id after each cache write."""
        self._refresh_handlers.append(handler)

    async def _notify(self, establishment_id: str):
        for handler in self._refresh_handlers:
            try:
                result = handler(establishment_id)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Refresh handler failed for %s", establishment_id)
