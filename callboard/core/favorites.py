"""Bounded favorites for customer accounts."""

import asyncio
import logging
from collections import defaultdict
from typing import Dict

from ..errors import ConflictIgnored, FavoritesLimitExceeded
from ..store.base import RemoteStore, bounded
from .domain import CustomerProfile
from .sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class FavoritesGuard:
    """
    Adds and removes customer favorites.

    A customer may hold at most ``max_favorites`` establishments. Adds for
    the same customer are serialized so the count check and the insert cannot
    interleave. Favorited establishments are tracked by the sync engine;
    every change returns the re-read profile.

    Store calls are bounded by the engine's fetch timeout and raise
    ``RemoteTimeout`` when it is exceeded.
    """

    def __init__(self, store: RemoteStore, sync: SyncEngine, max_favorites: int = 3):
        self.store = store
        self.sync = sync
        self.max_favorites = max_favorites
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _bounded(self, awaitable, description: str):
        return bounded(awaitable, self.sync.fetch_timeout, description)

    async def load_profile(self, user_id: str) -> CustomerProfile:
        """Read contact details and favorites for a customer."""
        details = await self._bounded(
            self.store.select_one("customer_details", where={"user_id": user_id}),
            "customer details lookup",
        )
        favorites = await self._bounded(
            self.store.select("customer_favorites", where={"user_id": user_id}),
            "favorites lookup",
        )

        return CustomerProfile(
            user_id=user_id,
            favorite_establishment_ids=tuple(f["establishment_id"] for f in favorites),
            phone=details.get("phone") if details else None,
            cep=details.get("cep") if details else None,
        )

    async def add_favorite(self, user_id: str, establishment_id: str) -> CustomerProfile:
        """
        Favorite an establishment.

        Re-adding an existing favorite is a no-op.

        Raises:
            FavoritesLimitExceeded: the customer already holds the maximum
            RemoteTimeout: the store did not answer in time
        """
        async with self._locks[user_id]:
            current = await self._bounded(
                self.store.count("customer_favorites", where={"user_id": user_id}),
                "favorites count",
            )
            if current >= self.max_favorites:
                already = await self._bounded(
                    self.store.count(
                        "customer_favorites",
                        where={"user_id": user_id, "establishment_id": establishment_id},
                    ),
                    "favorites count",
                )
                if not already:
                    raise FavoritesLimitExceeded(user_id, self.max_favorites)
            else:
                try:
                    await self._bounded(
                        self.store.insert(
                            "customer_favorites",
                            {"user_id": user_id, "establishment_id": establishment_id},
                        ),
                        "favorite insert",
                    )
                except ConflictIgnored:
                    logger.debug("Favorite %s already held by %s", establishment_id, user_id)

        self.sync.track(establishment_id)
        await self.sync.refresh(establishment_id)
        return await self.load_profile(user_id)

    async def remove_favorite(self, user_id: str, establishment_id: str) -> CustomerProfile:
        async with self._locks[user_id]:
            await self._bounded(
                self.store.delete(
                    "customer_favorites",
                    where={"user_id": user_id, "establishment_id": establishment_id},
                ),
                "favorite delete",
            )
        self.sync.untrack(establishment_id, drop_cached=True)
        return await self.load_profile(user_id)
