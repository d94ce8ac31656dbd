"""Observable per-key queries used by the page stores."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Hashable, Iterable
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChangeNotifier:
    """Tracks live queries by key and wakes them when that key changes."""

    def __init__(self) -> None:
        self._queries: dict[Hashable, set[LiveQuery]] = {}

    def register(self, key: Hashable, query: "LiveQuery") -> None:
        self._queries.setdefault(key, set()).add(query)

    def unregister(self, key: Hashable, query: "LiveQuery") -> None:
        queries = self._queries.get(key)
        if not queries:
            return
        queries.discard(query)
        if not queries:
            self._queries.pop(key, None)

    def notify(self, keys: Iterable[Hashable]) -> None:
        """Mark every live query attached to ``keys`` as stale."""

        for key in set(keys):
            for query in tuple(self._queries.get(key, ())):
                query.invalidate()

    def subscriber_count(self, key: Hashable) -> int:
        return len(self._queries.get(key, ()))


class LiveQuery(Generic[T]):
    """Async iterator re-running ``loader`` whenever its key is invalidated.

    The first iteration yields the current snapshot straight away. Later
    iterations wait for an invalidation, so bursts of changes collapse into
    a single re-read. The iterator never ends on its own; call :meth:`close`
    (or ``aclose``) to detach it.
    """

    def __init__(
        self,
        notifier: ChangeNotifier,
        key: Hashable,
        loader: Callable[[], Awaitable[T]],
    ) -> None:
        self._notifier = notifier
        self._key = key
        self._loader = loader
        self._changed = asyncio.Event()
        self._changed.set()
        self._closed = False
        notifier.register(key, self)
        logger.debug("Live query attached for %s", key)

    @property
    def key(self) -> Hashable:
        return self._key

    @property
    def closed(self) -> bool:
        return self._closed

    def invalidate(self) -> None:
        self._changed.set()

    def __aiter__(self) -> "LiveQuery[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        await self._changed.wait()
        if self._closed:
            raise StopAsyncIteration
        # Cleared before loading so writes landing mid-read trigger another pass.
        self._changed.clear()
        return await self._loader()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._notifier.unregister(self._key, self)
        self._changed.set()
        logger.debug("Live query detached for %s", self._key)

    async def aclose(self) -> None:
        self.close()

    async def __aenter__(self) -> "LiveQuery[T]":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
