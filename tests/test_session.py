"""Tests for per-user session scoping."""

import asyncio

import pytest

from callboard.core.cache import EstablishmentCache
from callboard.core.domain import Role
from callboard.core.session import SessionManager
from callboard.core.sync_engine import RefreshOutcome
from callboard.errors import NoActiveSession, RemoteTimeout

from conftest import DEFAULT_SETTINGS


@pytest.fixture
async def sessions(store):
    sessions = SessionManager(store, EstablishmentCache(), DEFAULT_SETTINGS, poll_interval=60.0)
    yield sessions
    await sessions.sign_out()


class TestSignIn:
    """Tests for starting a session."""

    @pytest.mark.anyio
    async def test_owner_tracks_own_establishment(self, sessions, seed):
        await seed.profile("owner-1", role="ESTABLISHMENT", name="Dona Maria")
        eid = await seed.establishment(owner_id="owner-1")

        user = await sessions.sign_in("owner-1", "maria@example.com")

        assert user.role == Role.ESTABLISHMENT
        assert user.establishment_id == eid
        assert sessions.sync.tracked_ids == [eid]
        assert sessions.sync.running
        assert sessions.current_establishment.name == "Cantina Central"

    @pytest.mark.anyio
    async def test_customer_tracks_favorites(self, sessions, seed, store):
        await seed.profile("customer-1", role="CUSTOMER")
        first = await seed.establishment(owner_id="o1")
        second = await seed.establishment(owner_id="o2", phone="1133334444")
        await store.insert("customer_favorites", {"user_id": "customer-1", "establishment_id": first})
        await store.insert("customer_favorites", {"user_id": "customer-1", "establishment_id": second})

        user = await sessions.sign_in("customer-1", "c@example.com")

        assert user.role == Role.CUSTOMER
        assert sorted(sessions.sync.tracked_ids) == sorted([first, second])
        assert sorted(sessions.cache.ids()) == sorted([first, second])
        assert set(sessions.customer_profile.favorite_establishment_ids) == {first, second}

    @pytest.mark.anyio
    async def test_missing_profile_uses_placeholder(self, sessions, seed):
        eid = await seed.establishment(owner_id="ghost", name="Bar do Ze")

        user = await sessions.sign_in("ghost", "ghost@example.com")

        assert user.degraded
        assert user.role == Role.ESTABLISHMENT
        assert user.name == "Bar do Ze"
        assert user.establishment_id == eid

    @pytest.mark.anyio
    async def test_missing_profile_without_establishment_is_customer(self, sessions):
        user = await sessions.sign_in("new-user", "new@example.com")

        assert user.degraded
        assert user.role == Role.CUSTOMER
        assert user.name == "new"

    @pytest.mark.anyio
    async def test_switching_users_drops_previous_cache(self, sessions, seed):
        await seed.profile("owner-1", role="ESTABLISHMENT")
        await seed.profile("owner-2", role="ESTABLISHMENT")
        first = await seed.establishment(owner_id="owner-1")
        second = await seed.establishment(owner_id="owner-2", phone="1122223333")

        await sessions.sign_in("owner-1", "a@example.com")
        previous_engine = sessions.sync
        await sessions.sign_in("owner-2", "b@example.com")

        assert not previous_engine.running
        assert sessions.sync is not previous_engine
        assert sessions.cache.ids() == [second]
        assert first not in sessions.cache


class TestSignOut:
    """Tests for ending a session."""

    @pytest.mark.anyio
    async def test_sign_out_clears_everything(self, sessions, seed):
        await seed.profile("owner-1", role="ESTABLISHMENT")
        await seed.establishment(owner_id="owner-1")
        await sessions.sign_in("owner-1", "a@example.com")
        engine = sessions.sync

        await sessions.sign_out()

        assert not engine.running
        assert len(sessions.cache) == 0
        assert sessions.current_user is None
        with pytest.raises(NoActiveSession):
            sessions.lifecycle

    @pytest.mark.anyio
    async def test_listeners_survive_new_sessions(self, sessions, seed):
        await seed.profile("owner-1", role="ESTABLISHMENT")
        eid = await seed.establishment(owner_id="owner-1")
        seen = []
        sessions.on_refresh(seen.append)

        await sessions.sign_in("owner-1", "a@example.com")
        await sessions.sign_out()
        await sessions.sign_in("owner-1", "a@example.com")

        assert seen.count(eid) >= 2
        assert set(seen) == {eid}


class TestCustomerHelpers:
    """Tests for phone lookup and favorites through the session."""

    @pytest.mark.anyio
    async def test_find_by_phone_ignores_punctuation(self, sessions, seed):
        await seed.profile("customer-1", role="CUSTOMER")
        eid = await seed.establishment(phone="11999990000")
        await sessions.sign_in("customer-1", "c@example.com")

        found = await sessions.find_establishment_by_phone("(11) 99999-0000")

        assert found.id == eid
        assert eid in sessions.sync.tracked_ids

    @pytest.mark.anyio
    async def test_find_by_unknown_phone(self, sessions, seed):
        await seed.profile("customer-1", role="CUSTOMER")
        await sessions.sign_in("customer-1", "c@example.com")

        assert await sessions.find_establishment_by_phone("0800") is None
        assert await sessions.find_establishment_by_phone("---") is None

    @pytest.mark.anyio
    async def test_add_and_remove_favorite(self, sessions, seed):
        await seed.profile("customer-1", role="CUSTOMER")
        eid = await seed.establishment()
        await sessions.sign_in("customer-1", "c@example.com")

        profile = await sessions.add_favorite(eid)
        assert profile.favorite_establishment_ids == (eid,)
        assert sessions.customer_profile is profile

        profile = await sessions.remove_favorite(eid)
        assert profile.favorite_establishment_ids == ()

    @pytest.mark.anyio
    async def test_helpers_require_session(self, sessions):
        with pytest.raises(NoActiveSession):
            await sessions.add_favorite("anything")


class TestSessionRaces:
    """Sign-out and slow remotes around a live session."""

    @pytest.mark.anyio
    async def test_sign_out_during_direct_refresh(self, flaky, seed):
        await seed.profile("owner-1", role="ESTABLISHMENT")
        eid = await seed.establishment(owner_id="owner-1")
        sessions = SessionManager(flaky, EstablishmentCache(), DEFAULT_SETTINGS, poll_interval=60.0)
        await sessions.sign_in("owner-1", "a@example.com")
        seen = []
        sessions.on_refresh(seen.append)

        flaky.delay = 0.2
        refreshing = asyncio.create_task(sessions.sync.refresh(eid))
        await asyncio.sleep(0.05)
        await sessions.sign_out()

        assert await refreshing == RefreshOutcome.SKIPPED
        assert len(sessions.cache) == 0
        assert seen == []

    @pytest.mark.anyio
    async def test_slow_owner_lookup_times_out(self, flaky, seed):
        await seed.profile("owner-1", role="ESTABLISHMENT")
        await seed.establishment(owner_id="owner-1")
        sessions = SessionManager(
            flaky, EstablishmentCache(), DEFAULT_SETTINGS, poll_interval=60.0, fetch_timeout=0.05
        )
        flaky.delay = 1.0

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(RemoteTimeout):
            await sessions.sign_in("owner-1", "a@example.com")

        assert loop.time() - started < 0.5
        assert sessions.current_user is None

    @pytest.mark.anyio
    async def test_slow_favorites_load_leaves_nobody_signed_in(self, flaky, seed):
        await seed.profile("customer-1", role="CUSTOMER")
        sessions = SessionManager(
            flaky, EstablishmentCache(), DEFAULT_SETTINGS, poll_interval=60.0, fetch_timeout=0.05
        )
        inner_select = flaky.select

        async def slow_select(collection, **kwargs):
            if collection == "customer_favorites":
                await asyncio.sleep(1.0)
            return await inner_select(collection, **kwargs)

        flaky.select = slow_select
        with pytest.raises(RemoteTimeout):
            await sessions.sign_in("customer-1", "c@example.com")

        assert sessions.current_user is None
        with pytest.raises(NoActiveSession):
            sessions.sync

    @pytest.mark.anyio
    async def test_slow_phone_search_times_out(self, flaky, seed):
        await seed.profile("customer-1", role="CUSTOMER")
        await seed.establishment(phone="11999990000")
        sessions = SessionManager(
            flaky, EstablishmentCache(), DEFAULT_SETTINGS, poll_interval=60.0, fetch_timeout=0.05
        )
        await sessions.sign_in("customer-1", "c@example.com")

        flaky.delay = 1.0
        with pytest.raises(RemoteTimeout):
            await sessions.find_establishment_by_phone("11999990000")
        await sessions.sign_out()
