"""Maturity filtering applied to page results before presentation."""

from __future__ import annotations

from typing import AsyncIterator, Iterable

from ..models import CachedItem, DomainItem
from ..results import Error, Loading, PageResult, Success

DEFAULT_EXPLICIT_THRESHOLD = 0.4


def filter_explicit(
    items: Iterable[CachedItem], threshold: float = DEFAULT_EXPLICIT_THRESHOLD
) -> tuple[DomainItem, ...]:
    """Keep entries rated strictly below ``threshold`` and drop the rating."""

    return tuple(item.to_domain() for item in items if item.explicit < threshold)


def project_result(
    result: PageResult, threshold: float = DEFAULT_EXPLICIT_THRESHOLD
) -> PageResult:
    match result:
        case Success(data=items):
            return Success(filter_explicit(items, threshold))
        case Loading() | Error():
            return result
    raise TypeError(f"Unsupported page result: {result!r}")


async def project_stream(
    results: AsyncIterator[PageResult],
    threshold: float = DEFAULT_EXPLICIT_THRESHOLD,
) -> AsyncIterator[PageResult]:
    """Apply :func:`project_result` to every element of ``results``."""

    try:
        async for result in results:
            yield project_result(result, threshold)
    finally:
        aclose = getattr(results, "aclose", None)
        if aclose is not None:
            await aclose()
