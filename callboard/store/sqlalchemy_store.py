"""RemoteStore implementation over SQLAlchemy async sessions."""

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Set, Type

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..errors import ConflictIgnored, RemoteUnavailable
from ..models import Base, Call, CustomerDetails, CustomerFavorite, Establishment, Profile
from .base import ChangeHandler, Filters, InFilters, Record, RemoteStore, Unsubscribe

logger = logging.getLogger(__name__)


MODELS: Dict[str, Type[Base]] = {
    "profiles": Profile,
    "establishments": Establishment,
    "calls": Call,
    "customer_favorites": CustomerFavorite,
    "customer_details": CustomerDetails,
}

# Collections whose writes are published on the change feed, and the column
# holding the establishment id for each.
WATCHED = {
    "calls": "establishment_id",
    "establishments": "id",
}


class SqlAlchemyRemoteStore(RemoteStore):
    """
    Record store backed by a relational database.

    Writes to ``calls`` and ``establishments`` are published to subscribers of
    the affected establishment once the transaction has committed.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory
        self._subscribers: Dict[str, List[ChangeHandler]] = defaultdict(list)
        self._dispatch_tasks: Set[asyncio.Task] = set()

    # ==================== Query helpers ====================

    @staticmethod
    def _model(collection: str) -> Type[Base]:
        try:
            return MODELS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}") from None

    @staticmethod
    def _conditions(model: Type[Base], where: Filters, where_in: InFilters) -> list:
        conditions = []
        for column, value in (where or {}).items():
            conditions.append(getattr(model, column) == value)
        for column, values in (where_in or {}).items():
            conditions.append(getattr(model, column).in_(list(values)))
        return conditions

    # ==================== RemoteStore ====================

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
        model = self._model(collection)
        query = select(model).where(*self._conditions(model, where, where_in))

        if order_by:
            column = getattr(model, order_by)
            query = query.order_by(column.asc() if ascending else column.desc())
        if limit is not None:
            query = query.limit(limit)

        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return [row.to_dict() for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise RemoteUnavailable(f"select on {collection} failed: {exc}") from exc

    async def insert(self, collection: str, values: Mapping[str, Any]) -> Record:
        model = self._model(collection)
        try:
            async with self._session_factory() as session:
                row = model(**values)
                session.add(row)
                await session.commit()
                record = row.to_dict()
        except IntegrityError as exc:
            raise ConflictIgnored(f"duplicate {collection} record") from exc
        except SQLAlchemyError as exc:
            raise RemoteUnavailable(f"insert into {collection} failed: {exc}") from exc

        if collection in WATCHED:
            self._publish(collection, "INSERT", {record[WATCHED[collection]]})
        return record

    async def update(
        self,
        collection: str,
        values: Mapping[str, Any],
        *,
        where: Filters = None,
        where_in: InFilters = None,
    ) -> int:
        model = self._model(collection)
        conditions = self._conditions(model, where, where_in)
        try:
            async with self._session_factory() as session:
                affected = await self._affected_establishments(
                    session, collection, model, conditions
                )
                result = await session.execute(
                    update(model).where(*conditions).values(**values)
                )
                await session.commit()
        except IntegrityError as exc:
            raise ConflictIgnored(f"conflicting {collection} update") from exc
        except SQLAlchemyError as exc:
            raise RemoteUnavailable(f"update on {collection} failed: {exc}") from exc

        if result.rowcount:
            self._publish(collection, "UPDATE", affected)
        return result.rowcount

    async def delete(
        self, collection: str, *, where: Filters = None, where_in: InFilters = None
    ) -> int:
        model = self._model(collection)
        conditions = self._conditions(model, where, where_in)
        try:
            async with self._session_factory() as session:
                affected = await self._affected_establishments(
                    session, collection, model, conditions
                )
                result = await session.execute(delete(model).where(*conditions))
                await session.commit()
        except SQLAlchemyError as exc:
            raise RemoteUnavailable(f"delete on {collection} failed: {exc}") from exc

        if result.rowcount:
            self._publish(collection, "DELETE", affected)
        return result.rowcount

    async def count(
        self, collection: str, *, where: Filters = None, where_in: InFilters = None
    ) -> int:
        model = self._model(collection)
        query = (
            select(func.count())
            .select_from(model)
            .where(*self._conditions(model, where, where_in))
        )
        try:
            async with self._session_factory() as session:
                return (await session.execute(query)).scalar_one()
        except SQLAlchemyError as exc:
            raise RemoteUnavailable(f"count on {collection} failed: {exc}") from exc

    # ==================== Change feed ====================

    def subscribe(self, establishment_id: str, handler: ChangeHandler) -> Unsubscribe:
        self._subscribers[establishment_id].append(handler)

        def unsubscribe():
            handlers = self._subscribers.get(establishment_id, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._subscribers.pop(establishment_id, None)

        return unsubscribe

    @staticmethod
    async def _affected_establishments(session, collection, model, conditions) -> Set[str]:
        column_name = WATCHED.get(collection)
        if column_name is None:
            return set()
        column = getattr(model, column_name)
        result = await session.execute(select(column).where(*conditions).distinct())
        return set(result.scalars().all())

    def _publish(self, collection: str, event: str, establishment_ids: Set[str]):
        for establishment_id in establishment_ids:
            payload = {
                "collection": collection,
                "event": event,
                "establishment_id": establishment_id,
            }
            for handler in list(self._subscribers.get(establishment_id, [])):
                task = asyncio.create_task(self._dispatch(handler, payload))
                self._dispatch_tasks.add(task)
                task.add_done_callback(self._dispatch_tasks.discard)

    @staticmethod
    async def _dispatch(handler: ChangeHandler, payload: Record):
        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Change handler failed for %s", payload)

    async def close(self):
        """Wait for change notifications still being delivered."""
        if self._dispatch_tasks:
            await asyncio.gather(*self._dispatch_tasks, return_exceptions=True)
