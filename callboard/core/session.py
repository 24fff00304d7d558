"""Per-user session scoping for the sync engine and controllers."""

import logging
from typing import Optional

from ..errors import NoActiveSession, ProfileNotFound, RemoteUnavailable
from ..store.base import RemoteStore, bounded
from .cache import EstablishmentCache
from .domain import (
    CustomerProfile,
    Establishment,
    EstablishmentSettings,
    OwnerIdentity,
    Role,
    UserProfile,
    normalize_phone,
)
from .favorites import FavoritesGuard
from .lifecycle import CallLifecycleController
from .sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Owns the engine and controllers of the signed-in user.

    A fresh ``SyncEngine`` is built for every sign-in and stopped on sign-out,
    so no refresh of a previous session can outlive it. The cache is shared
    across sessions and pruned to what the new session can reach.
    """

    def __init__(
        self,
        store: RemoteStore,
        cache: EstablishmentCache,
        default_settings: EstablishmentSettings,
        poll_interval: float = 5.0,
        fetch_timeout: float = 8.0,
        max_favorites: int = 3,
    ):
        self.store = store
        self.cache = cache
        self.default_settings = default_settings
        self.poll_interval = poll_interval
        self.fetch_timeout = fetch_timeout
        self.max_favorites = max_favorites

        self.current_user: Optional[UserProfile] = None
        self.customer_profile: Optional[CustomerProfile] = None
        self._sync: Optional[SyncEngine] = None
        self._lifecycle: Optional[CallLifecycleController] = None
        self._favorites: Optional[FavoritesGuard] = None
        self._refresh_handlers = []

    # ==================== Accessors ====================

    def _require(self):
        if self.current_user is None or self._sync is None:
            raise NoActiveSession("No user is signed in")

    @property
    def sync(self) -> SyncEngine:
        self._require()
        return self._sync

    @property
    def lifecycle(self) -> CallLifecycleController:
        self._require()
        return self._lifecycle

    @property
    def favorites(self) -> FavoritesGuard:
        self._require()
        return self._favorites

    @property
    def current_establishment(self) -> Optional[Establishment]:
        """The owner's own establishment, as currently cached."""
        if self.current_user is None or self.current_user.establishment_id is None:
            return None
        return self.cache.get(self.current_user.establishment_id)

    def on_refresh(self, handler):
        """Register a refresh listener on every engine this manager builds."""
        self._refresh_handlers.append(handler)
        if self._sync is not None:
            self._sync.on_refresh(handler)

    # ==================== Sign in / out ====================

    async def sign_in(self, user_id: str, email: str) -> UserProfile:
        """
        Start a session for an authenticated user.

        A missing profile row is recovered with an in-memory placeholder.
        Remote failures, timeouts included, propagate to the caller and leave
        nobody signed in.
        """
        if self.current_user is not None:
            await self.sign_out()

        owned = await bounded(
            self.store.select_one("establishments", where={"owner_id": user_id}),
            self.fetch_timeout,
            "owner lookup",
        )
        user = await self._load_user(user_id, email, owned)

        sync = SyncEngine(
            self.store,
            self.cache,
            self.default_settings,
            poll_interval=self.poll_interval,
            fetch_timeout=self.fetch_timeout,
        )
        for handler in self._refresh_handlers:
            sync.on_refresh(handler)
        self._sync = sync
        self._lifecycle = CallLifecycleController(self.store, sync)
        self._favorites = FavoritesGuard(self.store, sync, self.max_favorites)
        self.current_user = user

        if user.role == Role.ESTABLISHMENT and owned is not None:
            user.establishment_id = str(owned["id"])
            sync.track(user.establishment_id, owner=OwnerIdentity(user.id, user.name))
        elif user.role == Role.CUSTOMER:
            try:
                self.customer_profile = await self._favorites.load_profile(user.id)
            except RemoteUnavailable:
                await self.sign_out()
                raise
            for establishment_id in self.customer_profile.favorite_establishment_ids:
                sync.track(establishment_id)

        self.cache.retain(sync.tracked_ids)
        for establishment_id in sync.tracked_ids:
            await sync.refresh(establishment_id)
        sync.start()

        logger.info("Signed in %s as %s", user.id, user.role.value)
        return user

    async def _fetch_profile(self, user_id: str, email: str) -> UserProfile:
        record = await bounded(
            self.store.select_one("profiles", where={"id": user_id}),
            self.fetch_timeout,
            "profile fetch",
        )
        if record is None:
            raise ProfileNotFound(user_id)
        return UserProfile.from_record(record, email)

    async def _load_user(self, user_id: str, email: str, owned) -> UserProfile:
        try:
            return await self._fetch_profile(user_id, email)
        except ProfileNotFound as exc:
            logger.warning("%s, using placeholder", exc)

        return UserProfile(
            id=user_id,
            email=email,
            role=Role.ESTABLISHMENT if owned is not None else Role.CUSTOMER,
            name=(owned or {}).get("name") or email.split("@")[0],
            degraded=True,
        )

    async def sign_out(self):
        """Stop the session's engine and drop cache entries it made reachable."""
        if self._sync is not None:
            await self._sync.stop()
        self.cache.retain(())

        if self.current_user is not None:
            logger.info("Signed out %s", self.current_user.id)
        self.current_user = None
        self.customer_profile = None
        self._sync = None
        self._lifecycle = None
        self._favorites = None

    # ==================== Customer helpers ====================

    async def find_establishment_by_phone(self, phone: str) -> Optional[Establishment]:
        """Look an establishment up by phone and keep it refreshed for this session."""
        self._require()
        digits = normalize_phone(phone)
        if not digits:
            return None

        record = await bounded(
            self.store.select_one("establishments", where={"phone": digits}),
            self.fetch_timeout,
            "phone search",
        )
        if record is None:
            return None

        establishment_id = str(record["id"])
        self._sync.track(establishment_id)
        await self._sync.refresh(establishment_id)
        return self.cache.get(establishment_id)

    async def add_favorite(self, establishment_id: str) -> CustomerProfile:
        self._require()
        self.customer_profile = await self._favorites.add_favorite(
            self.current_user.id, establishment_id
        )
        return self.customer_profile

    async def remove_favorite(self, establishment_id: str) -> CustomerProfile:
        self._require()
        self.customer_profile = await self._favorites.remove_favorite(
            self.current_user.id, establishment_id
        )
        return self.customer_profile
