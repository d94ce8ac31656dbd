"""Tests for switch-to-latest page selection."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from app.models import CatalogPage
from app.results import Error, Loading, Success
from app.services.catalog_client import ProtocolError
from app.services.page_cursor import Active, Delivery, Idle, PageCursor
from app.services.page_store import InMemoryPageStore
from app.services.page_sync import PageSyncCoordinator


def catalog_entry(item_id: str, *, explicit: float = 0.0) -> dict[str, Any]:
    return {
        "id": item_id,
        "title": f"Title {item_id}",
        "description": "",
        "image": {"url": None, "thumbnail": None, "sexual": explicit},
    }


class GatedCatalogClient:
    """Serves canned pages, holding selected pages until released."""

    def __init__(self, pages: dict[int, list[dict[str, Any]]]) -> None:
        self.pages = pages
        self.gates: dict[int, asyncio.Event] = {}
        self.started: dict[int, asyncio.Event] = {}
        self.failures: dict[int, Exception] = {}
        self.calls: list[int] = []

    def hold(self, page: int) -> asyncio.Event:
        gate = self.gates[page] = asyncio.Event()
        self.started[page] = asyncio.Event()
        return gate

    async def fetch_page(self, page: int, *, fields=None, filters=None) -> CatalogPage:
        self.calls.append(page)
        if page in self.started:
            self.started[page].set()
        if page in self.gates:
            await self.gates[page].wait()
        if page in self.failures:
            raise self.failures[page]
        return CatalogPage.model_validate({"results": self.pages.get(page, [])})


class GatedCountStore(InMemoryPageStore):
    """Store whose cache check for one page blocks until released."""

    def __init__(self, gated_page: int) -> None:
        super().__init__()
        self.gated_page = gated_page
        self.gate = asyncio.Event()

    async def count_by_page(self, page: int) -> int:
        if page == self.gated_page:
            await self.gate.wait()
        return await super().count_by_page(page)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=timeout)


def settled_for(deliveries: list[Delivery], page: int) -> list[Delivery]:
    return [
        delivery
        for delivery in deliveries
        if delivery.page == page and not isinstance(delivery.result, Loading)
    ]


@pytest.mark.anyio
async def test_select_opens_new_generations() -> None:
    client = GatedCatalogClient({1: [catalog_entry("v1")], 2: [catalog_entry("v2")]})
    deliveries: list[Delivery] = []

    async with PageCursor(
        PageSyncCoordinator(client, InMemoryPageStore()), deliveries.append
    ) as cursor:
        assert cursor.state == Idle()
        assert cursor.select(1) == 1
        assert cursor.state == Active(page=1, generation=1)
        assert cursor.select(2) == 2
        assert cursor.state == Active(page=2, generation=2)
        await wait_until(lambda: bool(settled_for(deliveries, 2)))

    assert cursor.state == Idle()
    assert cursor.closed is True


@pytest.mark.anyio
async def test_delivers_loading_then_filtered_success() -> None:
    client = GatedCatalogClient(
        {1: [catalog_entry("v1", explicit=0.1), catalog_entry("v2", explicit=0.4)]}
    )
    deliveries: list[Delivery] = []
    cursor = PageCursor(PageSyncCoordinator(client, InMemoryPageStore()), deliveries.append)

    cursor.select(1)
    await wait_until(lambda: len(deliveries) >= 2)
    await cursor.close()

    assert isinstance(deliveries[0].result, Loading)
    success = deliveries[1].result
    assert isinstance(success, Success)
    assert [item.id for item in success.data] == ["v1"]
    assert {delivery.generation for delivery in deliveries} == {1}


@pytest.mark.anyio
async def test_newer_selection_silences_pending_page() -> None:
    """Page 1 never reaches the sink once page 2 has been selected."""

    client = GatedCatalogClient({1: [catalog_entry("v1")], 2: [catalog_entry("v2")]})
    store = GatedCountStore(gated_page=1)
    deliveries: list[Delivery] = []
    cursor = PageCursor(PageSyncCoordinator(client, store), deliveries.append)

    cursor.select(1)
    await wait_until(lambda: len(deliveries) == 1)
    cursor.select(2)
    store.gate.set()
    await wait_until(lambda: bool(settled_for(deliveries, 2)))
    await asyncio.sleep(0.05)
    await cursor.close()

    assert settled_for(deliveries, 1) == []
    assert [d.generation for d in deliveries if d.page == 2][0] == 2
    assert isinstance(settled_for(deliveries, 2)[0].result, Success)


@pytest.mark.anyio
async def test_superseded_fetch_still_persists() -> None:
    client = GatedCatalogClient(
        {1: [catalog_entry("v1"), catalog_entry("v2")], 2: [catalog_entry("v3")]}
    )
    gate = client.hold(1)
    store = InMemoryPageStore()
    coordinator = PageSyncCoordinator(client, store)
    deliveries: list[Delivery] = []
    cursor = PageCursor(coordinator, deliveries.append)

    cursor.select(1)
    await asyncio.wait_for(client.started[1].wait(), timeout=2)
    cursor.select(2)
    await wait_until(lambda: bool(settled_for(deliveries, 2)))

    gate.set()
    await coordinator.drain()
    await asyncio.sleep(0.05)
    await cursor.close()

    assert await store.count_by_page(1) == 2
    assert settled_for(deliveries, 1) == []
    assert client.calls.count(1) == 1


@pytest.mark.anyio
async def test_failed_page_delivers_error() -> None:
    client = GatedCatalogClient({})
    client.failures[3] = ProtocolError("HTTP error: 503 Service Unavailable", status_code=503)
    deliveries: list[Delivery] = []
    cursor = PageCursor(PageSyncCoordinator(client, InMemoryPageStore()), deliveries.append)

    cursor.select(3)
    await wait_until(lambda: len(deliveries) >= 2)
    await cursor.close()

    assert isinstance(deliveries[0].result, Loading)
    error = deliveries[1].result
    assert isinstance(error, Error)
    assert error.message == "HTTP error: 503 Service Unavailable"


@pytest.mark.anyio
async def test_async_sinks_are_awaited() -> None:
    client = GatedCatalogClient({1: [catalog_entry("v1")]})
    received: list[Delivery] = []

    async def sink(delivery: Delivery) -> None:
        await asyncio.sleep(0)
        received.append(delivery)

    cursor = PageCursor(PageSyncCoordinator(client, InMemoryPageStore()), sink)
    cursor.select(1)
    await wait_until(lambda: len(received) >= 2)
    await cursor.close()

    assert isinstance(received[1].result, Success)


@pytest.mark.anyio
async def test_closed_cursor_rejects_selection() -> None:
    cursor = PageCursor(
        PageSyncCoordinator(GatedCatalogClient({}), InMemoryPageStore()), lambda _: None
    )
    await cursor.close()

    with pytest.raises(RuntimeError):
        cursor.select(1)


@pytest.mark.anyio
async def test_negative_page_is_rejected() -> None:
    cursor = PageCursor(
        PageSyncCoordinator(GatedCatalogClient({}), InMemoryPageStore()), lambda _: None
    )

    with pytest.raises(ValueError):
        cursor.select(-2)
    assert cursor.generation == 0
    await cursor.close()
