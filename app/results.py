"""Tagged states emitted while a catalog page is being resolved."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Loading:
    """The page has been requested and nothing is known yet."""


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    """A snapshot of the page contents."""

    data: T


@dataclass(frozen=True, slots=True)
class Error:
    """The page could not be produced."""

    message: str
    cause: BaseException | None = None


PageResult = Union[Loading, Success[T], Error]


def to_payload(result: PageResult) -> dict[str, object]:
    """Render a page result whose data is a sequence of domain items."""

    match result:
        case Loading():
            return {"status": "loading"}
        case Success(data=items):
            return {
                "status": "success",
                "items": [item.to_payload() for item in items],
            }
        case Error(message=message):
            return {"status": "error", "message": message}
    raise TypeError(f"Unsupported page result: {result!r}")


async def first_settled(results: AsyncIterator[PageResult]) -> PageResult:
    """Consume ``results`` until the first non-loading state and close it."""

    try:
        async for result in results:
            if not isinstance(result, Loading):
                return result
    finally:
        aclose = getattr(results, "aclose", None)
        if aclose is not None:
            await aclose()
    raise RuntimeError("Page stream ended before settling")
