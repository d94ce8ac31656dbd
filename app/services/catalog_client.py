"""Client for the remote catalog (VNDB kana compatible) API."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import CatalogItem, CatalogPage, PageQuery

logger = logging.getLogger(__name__)


class CatalogClientError(Exception):
    """Base class for failures talking to the remote catalog."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class NetworkError(CatalogClientError):
    """The request never produced an HTTP response."""


class ProtocolError(CatalogClientError):
    """The server answered with an error status or an unreadable body."""

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        *,
        status_code: int | None = None,
    ):
        super().__init__(message, cause)
        self.status_code = status_code


class UnknownError(CatalogClientError):
    """Any other failure while fetching or mapping catalog data."""


class CatalogClient:
    """Stateless accessor for single pages of the remote catalog."""

    _SEARCH_PATH = "/vn"

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    @property
    def default_fields(self) -> str:
        return self._settings.catalog_fields

    async def fetch_page(
        self,
        page: int,
        *,
        fields: str | None = None,
        filters: Sequence[Any] | None = None,
    ) -> CatalogPage:
        """Fetch one page of catalog entries in a single round trip."""

        query = PageQuery(
            fields=fields or self._settings.catalog_fields,
            page=page,
            filters=list(filters or []),
        )
        payload = await self._post(query)
        try:
            return CatalogPage.model_validate(payload)
        except ValidationError as exc:
            raise ProtocolError(
                f"Protocol error: unexpected catalog page shape ({exc.error_count()} issues)",
                exc,
            ) from exc

    async def fetch_item(
        self, item_id: str, *, fields: str | None = None
    ) -> CatalogItem | None:
        """Look up a single catalog entry by id."""

        query = PageQuery(
            fields=fields or self._settings.detail_fields,
            page=1,
            filters=["id", "=", item_id],
        )
        payload = await self._post(query)
        try:
            page = CatalogPage.model_validate(payload)
        except ValidationError as exc:
            raise ProtocolError(
                f"Protocol error: unexpected catalog entry shape ({exc.error_count()} issues)",
                exc,
            ) from exc
        for item in page.results:
            if item.id == item_id:
                return item
        return None

    async def _post(self, query: PageQuery) -> Any:
        body = query.model_dump(mode="json")
        logger.info(
            "Requesting catalog page %s (fields=%s, filters=%s)",
            query.page,
            query.fields,
            query.filters,
        )
        try:
            response = await self._client.post(self._SEARCH_PATH, json=body)
        except httpx.TransportError as exc:
            raise NetworkError(f"Network error: {exc}", exc) from exc
        except httpx.HTTPError as exc:
            raise UnknownError(f"Unknown error: {exc}", exc) from exc

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            reason = exc.response.reason_phrase or ""
            message = f"HTTP error: {status} {reason}".rstrip()
            logger.warning(
                "Catalog request for page %s failed: %s", query.page, message
            )
            raise ProtocolError(message, exc, status_code=status) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(
                "Protocol error: response body is not valid JSON", exc
            ) from exc
