"""Tests for bounded customer favorites."""

import asyncio

import pytest

from callboard.core.cache import EstablishmentCache
from callboard.core.favorites import FavoritesGuard
from callboard.core.sync_engine import SyncEngine
from callboard.errors import FavoritesLimitExceeded, RemoteTimeout, ValidationError

from conftest import DEFAULT_SETTINGS

CUSTOMER = "customer-1"


@pytest.fixture
async def engine(store):
    engine = SyncEngine(store, EstablishmentCache(), DEFAULT_SETTINGS, poll_interval=60.0)
    yield engine
    await engine.stop()


@pytest.fixture
def guard(store, engine):
    return FavoritesGuard(store, engine, max_favorites=3)


async def seed_establishments(seed, count):
    return [
        await seed.establishment(owner_id=f"owner-{i}", name=f"Place {i}", phone=f"1100000000{i}")
        for i in range(count)
    ]


class TestFavoritesGuard:
    """Tests for adding and removing favorites."""

    @pytest.mark.anyio
    async def test_first_three_succeed(self, guard, seed):
        ids = await seed_establishments(seed, 3)

        for expected, eid in enumerate(ids, start=1):
            profile = await guard.add_favorite(CUSTOMER, eid)
            assert len(profile.favorite_establishment_ids) == expected

        assert set(profile.favorite_establishment_ids) == set(ids)

    @pytest.mark.anyio
    async def test_fourth_is_rejected(self, guard, store, seed):
        ids = await seed_establishments(seed, 4)
        for eid in ids[:3]:
            await guard.add_favorite(CUSTOMER, eid)

        with pytest.raises(FavoritesLimitExceeded) as exc_info:
            await guard.add_favorite(CUSTOMER, ids[3])

        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.limit == 3
        assert await store.count("customer_favorites", where={"user_id": CUSTOMER}) == 3

    @pytest.mark.anyio
    async def test_readding_is_a_no_op(self, guard, store, seed):
        ids = await seed_establishments(seed, 3)
        for eid in ids:
            await guard.add_favorite(CUSTOMER, eid)

        profile = await guard.add_favorite(CUSTOMER, ids[0])

        assert len(profile.favorite_establishment_ids) == 3
        assert await store.count("customer_favorites", where={"user_id": CUSTOMER}) == 3

    @pytest.mark.anyio
    async def test_readding_below_limit_is_a_no_op(self, guard, store, seed):
        [eid] = await seed_establishments(seed, 1)
        await guard.add_favorite(CUSTOMER, eid)
        await guard.add_favorite(CUSTOMER, eid)

        assert await store.count("customer_favorites", where={"user_id": CUSTOMER}) == 1

    @pytest.mark.anyio
    async def test_limit_is_per_customer(self, guard, seed):
        ids = await seed_establishments(seed, 3)
        for eid in ids:
            await guard.add_favorite(CUSTOMER, eid)

        profile = await guard.add_favorite("customer-2", ids[0])
        assert profile.favorite_establishment_ids == (ids[0],)

    @pytest.mark.anyio
    async def test_added_favorite_is_tracked_and_cached(self, guard, engine, seed):
        [eid] = await seed_establishments(seed, 1)
        await guard.add_favorite(CUSTOMER, eid)

        assert eid in engine.tracked_ids
        assert engine.cache.get(eid) is not None

    @pytest.mark.anyio
    async def test_remove_frees_a_slot(self, guard, engine, seed):
        ids = await seed_establishments(seed, 4)
        for eid in ids[:3]:
            await guard.add_favorite(CUSTOMER, eid)

        profile = await guard.remove_favorite(CUSTOMER, ids[0])
        assert ids[0] not in profile.favorite_establishment_ids
        assert ids[0] not in engine.tracked_ids
        assert engine.cache.get(ids[0]) is None

        profile = await guard.add_favorite(CUSTOMER, ids[3])
        assert len(profile.favorite_establishment_ids) == 3

    @pytest.mark.anyio
    async def test_load_profile_reads_details(self, guard, store):
        await store.insert("customer_details", {"user_id": CUSTOMER, "phone": "11988887777", "cep": "01001000"})

        profile = await guard.load_profile(CUSTOMER)

        assert profile.phone == "11988887777"
        assert profile.cep == "01001000"
        assert profile.favorite_establishment_ids == ()


class TestConcurrentFavorites:
    """Adds racing for the last slot."""

    @pytest.mark.anyio
    async def test_concurrent_adds_never_exceed_limit(self, guard, store, seed):
        ids = await seed_establishments(seed, 5)
        for eid in ids[:2]:
            await guard.add_favorite(CUSTOMER, eid)

        results = await asyncio.gather(
            *(guard.add_favorite(CUSTOMER, eid) for eid in ids[2:]),
            return_exceptions=True,
        )

        rejected = [r for r in results if isinstance(r, FavoritesLimitExceeded)]
        accepted = [r for r in results if not isinstance(r, Exception)]
        assert len(accepted) == 1
        assert len(rejected) == 2
        assert await store.count("customer_favorites", where={"user_id": CUSTOMER}) == 3

    @pytest.mark.anyio
    async def test_concurrent_readds_of_same_favorite(self, guard, store, seed):
        ids = await seed_establishments(seed, 3)
        for eid in ids:
            await guard.add_favorite(CUSTOMER, eid)

        profiles = await asyncio.gather(*(guard.add_favorite(CUSTOMER, ids[0]) for _ in range(3)))

        assert all(len(p.favorite_establishment_ids) == 3 for p in profiles)
        assert await store.count("customer_favorites", where={"user_id": CUSTOMER}) == 3


class TestFavoritesTimeouts:
    """Store calls that exceed the fetch timeout."""

    @pytest.mark.anyio
    async def test_slow_count_raises_remote_timeout(self, flaky, seed):
        [eid] = await seed_establishments(seed, 1)
        engine = SyncEngine(flaky, EstablishmentCache(), DEFAULT_SETTINGS, fetch_timeout=0.05)
        guard = FavoritesGuard(flaky, engine)

        async def slow_count(collection, **kwargs):
            await asyncio.sleep(1.0)
            return 0

        flaky.count = slow_count
        with pytest.raises(RemoteTimeout):
            await guard.add_favorite(CUSTOMER, eid)

        assert eid not in engine.tracked_ids
        await engine.stop()

    @pytest.mark.anyio
    async def test_slow_profile_load_raises_remote_timeout(self, flaky):
        engine = SyncEngine(flaky, EstablishmentCache(), DEFAULT_SETTINGS, fetch_timeout=0.05)
        guard = FavoritesGuard(flaky, engine)
        inner_select = flaky.select

        async def slow_select(collection, **kwargs):
            if collection == "customer_favorites":
                await asyncio.sleep(1.0)
            return await inner_select(collection, **kwargs)

        flaky.select = slow_select
        with pytest.raises(RemoteTimeout):
            await guard.load_profile(CUSTOMER)
