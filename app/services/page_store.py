"""Page-keyed cache stores for catalog entries."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import CachedItemRecord
from ..models import CachedItem
from .live_query import ChangeNotifier, LiveQuery

logger = logging.getLogger(__name__)


class PageStore(Protocol):
    """Contract the page sync layer needs from a cache engine."""

    async def count_by_page(self, page: int) -> int:
        """Return how many cached entries carry ``page``."""

    async def upsert_batch(self, items: Sequence[CachedItem]) -> None:
        """Insert or replace ``items`` by id as a single unit."""

    def subscribe_by_page(self, page: int) -> LiveQuery[list[CachedItem]]:
        """Return a live snapshot stream for ``page``."""

    async def get_item(self, item_id: str) -> CachedItem | None:
        """Return the cached entry for ``item_id`` if present."""


def _snapshot_order(item: CachedItem) -> tuple[int, str]:
    return item.position, item.id


class InMemoryPageStore:
    """Dictionary-backed store, mainly for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._items: dict[str, CachedItem] = {}
        self._notifier = ChangeNotifier()

    async def count_by_page(self, page: int) -> int:
        return sum(1 for item in self._items.values() if item.page == page)

    async def upsert_batch(self, items: Sequence[CachedItem]) -> None:
        if not items:
            return
        # Staged first so a bad entry leaves the store untouched.
        staged = {item.id: item for item in items}
        touched_pages = {item.page for item in staged.values()}
        for item_id in staged:
            previous = self._items.get(item_id)
            if previous is not None:
                touched_pages.add(previous.page)
        self._items.update(staged)
        self._notifier.notify(touched_pages)

    def subscribe_by_page(self, page: int) -> LiveQuery[list[CachedItem]]:
        async def _load() -> list[CachedItem]:
            return sorted(
                (item for item in self._items.values() if item.page == page),
                key=_snapshot_order,
            )

        return LiveQuery(self._notifier, page, _load)

    async def get_item(self, item_id: str) -> CachedItem | None:
        return self._items.get(item_id)


class SqlPageStore:
    """Store persisting cached entries through SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._notifier = ChangeNotifier()

    async def count_by_page(self, page: int) -> int:
        async with self._session_factory() as session:
            stmt = (
                select(func.count())
                .select_from(CachedItemRecord)
                .where(CachedItemRecord.page == page)
            )
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def upsert_batch(self, items: Sequence[CachedItem]) -> None:
        if not items:
            return
        identities = [item.id for item in items]
        async with self._session_factory() as session:
            async with session.begin():
                stmt = select(CachedItemRecord.page).where(
                    CachedItemRecord.id.in_(identities)
                )
                result = await session.execute(stmt)
                touched_pages = {row[0] for row in result.all()}
                for item in items:
                    await session.merge(item.to_record())
                    touched_pages.add(item.page)
        logger.debug(
            "Upserted %d cached items touching pages %s",
            len(items),
            sorted(touched_pages),
        )
        self._notifier.notify(touched_pages)

    def subscribe_by_page(self, page: int) -> LiveQuery[list[CachedItem]]:
        async def _load() -> list[CachedItem]:
            async with self._session_factory() as session:
                stmt = (
                    select(CachedItemRecord)
                    .where(CachedItemRecord.page == page)
                    .order_by(CachedItemRecord.position, CachedItemRecord.id)
                )
                result = await session.execute(stmt)
                return [
                    CachedItem.from_record(record) for record in result.scalars()
                ]

        return LiveQuery(self._notifier, page, _load)

    async def get_item(self, item_id: str) -> CachedItem | None:
        async with self._session_factory() as session:
            record = await session.get(CachedItemRecord, item_id)
            if record is None:
                return None
            return CachedItem.from_record(record)
