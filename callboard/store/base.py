"""Remote record store contract consumed by the engine."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from ..errors import RemoteTimeout


COLLECTIONS = (
    "profiles",
    "establishments",
    "calls",
    "customer_favorites",
    "customer_details",
)

Record = Dict[str, Any]
Filters = Optional[Mapping[str, Any]]
InFilters = Optional[Mapping[str, Sequence[Any]]]

# Change-feed callbacks receive {"collection", "event", "establishment_id"}.
ChangeHandler = Callable[[Record], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


class RemoteStore(ABC):
    """
    Generic record store over named collections.

    ``where`` holds equality filters and ``where_in`` set-membership filters;
    both are ANDed. Implementations raise ``RemoteUnavailable`` when the
    backend cannot answer and ``ConflictIgnored`` on a unique-key clash.
    """

    @abstractmethod
    async def select(
        self,
        collection: str,
        *,
        where: Filters = None,
        where_in: InFilters = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """Return matching records."""

    @abstractmethod
    async def insert(self, collection: str, values: Mapping[str, Any]) -> Record:
        """Insert one record and return it as stored."""

    @abstractmethod
    async def update(
        self,
        collection: str,
        values: Mapping[str, Any],
        *,
        where: Filters = None,
        where_in: InFilters = None,
    ) -> int:
        """Update matching records; return the number of rows touched."""

    @abstractmethod
    async def delete(
        self, collection: str, *, where: Filters = None, where_in: InFilters = None
    ) -> int:
        """Delete matching records; return the number of rows removed."""

    @abstractmethod
    async def count(
        self, collection: str, *, where: Filters = None, where_in: InFilters = None
    ) -> int:
        """Count matching records without fetching them."""

    @abstractmethod
    def subscribe(self, establishment_id: str, handler: ChangeHandler) -> Unsubscribe:
        """Register for change notifications about one establishment."""

    async def select_one(self, collection: str, *, where: Filters = None) -> Optional[Record]:
        rows = await self.select(collection, where=where, limit=1)
        return rows[0] if rows else None


async def bounded(awaitable: Awaitable[Any], timeout: float, description: str) -> Any:
    """Await a store call, turning an exceeded time bound into ``RemoteTimeout``."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise RemoteTimeout(f"{description} exceeded {timeout}s") from None
