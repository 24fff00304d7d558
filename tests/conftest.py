"""Shared fixtures: a throwaway SQLite store and seeding helpers."""

import asyncio

import pytest

from callboard.core.domain import CallStatus, CallType, EstablishmentSettings
from callboard.core.escalation import now_millis
from callboard.errors import RemoteUnavailable
from callboard.models import create_engine, create_session_factory, init_db
from callboard.store import RemoteStore, SqlAlchemyRemoteStore


DEFAULT_SETTINGS = EstablishmentSettings(
    total_tables=10, time_green=30, time_yellow=90, qty_green=2, qty_yellow=4
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def store(anyio_backend, tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'callboard.db'}")
    await init_db(engine)
    store = SqlAlchemyRemoteStore(create_session_factory(engine))
    yield store
    await store.close()
    await engine.dispose()


class Seeder:
    """Writes fixture rows straight into the store."""

    def __init__(self, store: RemoteStore):
        self.store = store

    async def profile(self, user_id, role="ESTABLISHMENT", name="Owner", email=None):
        await self.store.insert(
            "profiles",
            {
                "id": user_id,
                "email": email or f"{user_id}@example.com",
                "role": role,
                "name": name,
                "status": "ACTIVE",
            },
        )

    async def establishment(
        self,
        owner_id="owner-1",
        name="Cantina Central",
        phone="11999990000",
        settings=DEFAULT_SETTINGS,
        is_open=True,
    ) -> str:
        record = await self.store.insert(
            "establishments",
            {
                "owner_id": owner_id,
                "name": name,
                "phone": phone,
                "phrase": "Welcome",
                "is_open": is_open,
                "settings": settings.to_json() if settings else None,
            },
        )
        return record["id"]

    async def call(
        self,
        establishment_id,
        table_number="1",
        call_type=CallType.WAITER,
        status=CallStatus.SENT,
        age_seconds=0,
    ) -> str:
        record = await self.store.insert(
            "calls",
            {
                "establishment_id": establishment_id,
                "table_number": str(table_number),
                "type": call_type.value,
                "status": status.value,
                "created_at_ts": now_millis() - int(age_seconds * 1000),
            },
        )
        return record["id"]

    async def call_statuses(self, establishment_id) -> dict:
        rows = await self.store.select("calls", where={"establishment_id": establishment_id})
        return {row["id"]: row["status"] for row in rows}


@pytest.fixture
def seed(store):
    return Seeder(store)


class FlakyStore(RemoteStore):
    """
    Store wrapper that can slow down or fail establishment fetches.

    Counts establishment fetches and the highest number that overlapped.
    """

    def __init__(self, inner: RemoteStore):
        self.inner = inner
        self.delay = 0.0
        self.fail = False
        self.fetches = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def select(self, collection, **kwargs):
        if collection != "establishments":
            return await self.inner.select(collection, **kwargs)

        self.fetches += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise RemoteUnavailable("injected failure")
            return await self.inner.select(collection, **kwargs)
        finally:
            self.in_flight -= 1

    async def insert(self, collection, values):
        return await self.inner.insert(collection, values)

    async def update(self, collection, values, **kwargs):
        return await self.inner.update(collection, values, **kwargs)

    async def delete(self, collection, **kwargs):
        return await self.inner.delete(collection, **kwargs)

    async def count(self, collection, **kwargs):
        return await self.inner.count(collection, **kwargs)

    def subscribe(self, establishment_id, handler):
        return self.inner.subscribe(establishment_id, handler)


@pytest.fixture
def flaky(store):
    return FlakyStore(store)


async def eventually(predicate, timeout=2.0, interval=0.01):
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until():
    return eventually
