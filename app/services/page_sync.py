"""Cache-aside synchronisation of catalog pages."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from functools import partial
from typing import Any, AsyncIterator, Callable, Sequence

from ..config import REQUIRED_PAGE_FIELDS
from ..models import CachedItem
from ..results import Error, Loading, PageResult, Success
from ..utils import normalize_field_spec
from .catalog_client import CatalogClient, CatalogClientError, UnknownError
from .page_store import PageStore

logger = logging.getLogger(__name__)

RefreshKey = tuple[int, str, str]


class PageSyncCoordinator:
    """Serves catalog pages from the local store, fetching empty pages first.

    A page counts as cached as soon as a single row carries its number; there
    is no staleness tracking. Fetches run as shielded background jobs shared
    by every concurrent request for the same page, field spec and filters, so
    a consumer going away never aborts a request that was already sent.
    """

    def __init__(
        self,
        client: CatalogClient,
        store: PageStore,
        *,
        default_fields: str | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._client = client
        self._store = store
        self._default_fields = normalize_field_spec(
            default_fields, required=REQUIRED_PAGE_FIELDS
        )
        self._clock = clock
        self._refresh_jobs: dict[RefreshKey, asyncio.Task[None]] = {}

    @property
    def pending_refreshes(self) -> int:
        return len(self._refresh_jobs)

    async def request_page(
        self,
        page: int,
        *,
        fields: str | None = None,
        filters: Sequence[Any] | None = None,
    ) -> AsyncIterator[PageResult]:
        """Yield ``Loading`` and then either live snapshots or one ``Error``."""

        if page < 0:
            raise ValueError("Page numbers must be non-negative")

        yield Loading()

        cached_count = await self._store.count_by_page(page)
        if cached_count == 0:
            try:
                await self._ensure_refreshed(page, fields, filters)
            except CatalogClientError as exc:
                logger.warning("Refreshing page %s failed: %s", page, exc.message)
                yield Error(exc.message, exc)
                return
        else:
            logger.debug("Page %s served from cache (%d rows)", page, cached_count)

        snapshots = self._store.subscribe_by_page(page)
        try:
            async for snapshot in snapshots:
                yield Success(tuple(snapshot))
        finally:
            snapshots.close()

    async def drain(self) -> None:
        """Wait for every in-flight refresh to settle."""

        jobs = list(self._refresh_jobs.values())
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)

    async def stop(self) -> None:
        """Cancel outstanding refresh jobs."""

        jobs = list(self._refresh_jobs.values())
        for job in jobs:
            job.cancel()
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)
        self._refresh_jobs.clear()

    async def _ensure_refreshed(
        self,
        page: int,
        fields: str | None,
        filters: Sequence[Any] | None,
    ) -> None:
        field_spec = normalize_field_spec(
            fields or self._default_fields, required=REQUIRED_PAGE_FIELDS
        )
        filter_spec = list(filters or [])
        key: RefreshKey = (
            page,
            field_spec,
            json.dumps(filter_spec, sort_keys=True, default=str),
        )

        job = self._refresh_jobs.get(key)
        if job is None or job.done():
            job = asyncio.create_task(self._refresh(page, field_spec, filter_spec))
            self._refresh_jobs[key] = job
            job.add_done_callback(partial(self._forget_job, key))
        else:
            logger.debug("Joining in-flight refresh for page %s", page)
        await asyncio.shield(job)

    def _forget_job(self, key: RefreshKey, job: asyncio.Task[None]) -> None:
        if self._refresh_jobs.get(key) is job:
            self._refresh_jobs.pop(key, None)
        if job.cancelled():
            return
        exc = job.exception()
        if exc is not None and not isinstance(exc, CatalogClientError):
            logger.error("Background refresh for page %s crashed", key[0], exc_info=exc)

    async def _refresh(self, page: int, fields: str, filters: list[Any]) -> None:
        try:
            catalog_page = await self._client.fetch_page(
                page, fields=fields, filters=filters
            )
        except CatalogClientError:
            raise
        except Exception as exc:
            raise UnknownError(f"Unknown error: {exc}", exc) from exc

        try:
            cached_at = self._clock()
            items: list[CachedItem] = [
                entry.to_cached(page, cached_at, position)
                for position, entry in enumerate(catalog_page.results)
            ]
        except Exception as exc:
            raise UnknownError(f"Unknown error: {exc}", exc) from exc

        await self._store.upsert_batch(items)
        logger.info("Cached %d catalog items for page %s", len(items), page)
