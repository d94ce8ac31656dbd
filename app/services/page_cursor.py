"""Tracks the page a consumer is looking at and delivers its results."""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Callable, Sequence, Union

from ..results import PageResult
from .content_filter import DEFAULT_EXPLICIT_THRESHOLD, project_stream
from .page_sync import PageSyncCoordinator

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Idle:
    """No page has been selected yet."""


@dataclass(frozen=True, slots=True)
class Active:
    page: int
    generation: int


CursorState = Union[Idle, Active]


@dataclass(frozen=True, slots=True)
class Delivery:
    """A filtered page result tagged with the selection that produced it."""

    page: int
    generation: int
    result: PageResult


Sink = Callable[[Delivery], Any]


class PageCursor:
    """Switch-to-latest view over :class:`PageSyncCoordinator` streams.

    Each :meth:`select` call opens a new generation. Results are handed to
    the sink only while their generation is the current one; the previous
    generation's stream is cancelled, which detaches its store subscription
    but leaves any fetch it already issued to finish in the background.
    """

    def __init__(
        self,
        coordinator: PageSyncCoordinator,
        sink: Sink,
        *,
        explicit_threshold: float = DEFAULT_EXPLICIT_THRESHOLD,
    ):
        self._coordinator = coordinator
        self._sink = sink
        self._threshold = explicit_threshold
        self._state: CursorState = Idle()
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def state(self) -> CursorState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def closed(self) -> bool:
        return self._closed

    def select(
        self,
        page: int,
        *,
        fields: str | None = None,
        filters: Sequence[Any] | None = None,
    ) -> int:
        """Start delivering ``page`` and return the new generation."""

        if self._closed:
            raise RuntimeError("Page cursor has been closed")
        if page < 0:
            raise ValueError("Page numbers must be non-negative")

        self._generation += 1
        generation = self._generation
        self._state = Active(page=page, generation=generation)

        previous = self._task
        if previous is not None and not previous.done():
            previous.cancel()

        self._task = asyncio.create_task(
            self._pump(page, generation, fields, filters)
        )
        logger.debug("Selected page %s as generation %s", page, generation)
        return generation

    async def close(self) -> None:
        """Cancel the active stream and refuse further selections."""

        self._closed = True
        self._state = Idle()
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def __aenter__(self) -> "PageCursor":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    async def _pump(
        self,
        page: int,
        generation: int,
        fields: str | None,
        filters: Sequence[Any] | None,
    ) -> None:
        stream = project_stream(
            self._coordinator.request_page(page, fields=fields, filters=filters),
            self._threshold,
        )
        try:
            async for result in stream:
                if not self._is_current(generation):
                    logger.debug(
                        "Dropping result for superseded generation %s (page %s)",
                        generation,
                        page,
                    )
                    break
                outcome = self._sink(Delivery(page, generation, result))
                if inspect.isawaitable(outcome):
                    await outcome
        except Exception as exc:  # pragma: no cover - background safety net
            logger.exception(
                "Page stream for page %s (generation %s) failed: %s",
                page,
                generation,
                exc,
            )
        finally:
            await stream.aclose()
