"""Catalog payload models and the mappings between them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import strip_bbcode

if TYPE_CHECKING:
    from .db_models import CachedItemRecord


class CatalogImage(BaseModel):
    """Artwork block attached to a remote catalog entry."""

    model_config = ConfigDict(populate_by_name=True)

    url: str | None = None
    thumbnail: str | None = None
    explicit: float = Field(alias="sexual", ge=0.0, le=1.0)


class CatalogItem(BaseModel):
    """Represents a single entry as returned by the remote catalog."""

    id: str = Field(min_length=1)
    title: str
    description: str = ""
    image: CatalogImage

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_missing_description(cls, value: object) -> object:
        if value is None:
            return ""
        return value

    def to_cached(
        self, page: int, cached_at: datetime, position: int = 0
    ) -> "CachedItem":
        """Return the persisted representation tagged with ``page``."""

        return CachedItem(
            id=self.id,
            page=page,
            title=self.title,
            description=self.description,
            image_url=self.image.url,
            thumbnail_url=self.image.thumbnail,
            explicit=self.image.explicit,
            created_at=cached_at,
            position=position,
        )


class CatalogPage(BaseModel):
    """One page of remote catalog results."""

    results: list[CatalogItem]
    more: bool = False


class PageQuery(BaseModel):
    """Request body accepted by the remote catalog endpoint."""

    fields: str
    page: int = Field(default=1, ge=0)
    filters: list[Any] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CachedItem:
    """Row-shaped view of a catalog entry held by a page store."""

    id: str
    page: int
    title: str
    description: str
    image_url: str | None
    thumbnail_url: str | None
    explicit: float
    created_at: datetime
    position: int = 0

    @classmethod
    def from_record(cls, record: "CachedItemRecord") -> "CachedItem":
        return cls(
            id=record.id,
            page=record.page,
            title=record.title,
            description=record.description,
            image_url=record.image_url,
            thumbnail_url=record.thumbnail_url,
            explicit=record.explicit,
            created_at=record.created_at,
            position=record.position,
        )

    def to_record(self) -> "CachedItemRecord":
        from .db_models import CachedItemRecord

        return CachedItemRecord(
            id=self.id,
            page=self.page,
            position=self.position,
            title=self.title,
            description=self.description,
            image_url=self.image_url,
            thumbnail_url=self.thumbnail_url,
            explicit=self.explicit,
            created_at=self.created_at,
        )

    def to_domain(self) -> "DomainItem":
        """Drop storage-only attributes, including the explicit rating."""

        return DomainItem(
            id=self.id,
            title=self.title,
            description=self.description,
            image=DomainImage(url=self.image_url, thumbnail=self.thumbnail_url),
        )


@dataclass(frozen=True, slots=True)
class DomainImage:
    url: str | None = None
    thumbnail: str | None = None


@dataclass(frozen=True, slots=True)
class DomainItem:
    """Presentation-ready catalog entry."""

    id: str
    title: str
    description: str
    image: DomainImage

    @classmethod
    def from_catalog_item(cls, item: CatalogItem) -> "DomainItem":
        image = item.image
        return cls(
            id=item.id,
            title=item.title,
            description=item.description,
            image=DomainImage(url=image.url, thumbnail=image.thumbnail),
        )

    def to_payload(self) -> dict[str, object]:
        """Return a JSON-compatible payload for the HTTP surface."""

        return {
            "id": self.id,
            "title": self.title,
            "description": strip_bbcode(self.description),
            "image": {"url": self.image.url, "thumbnail": self.image.thumbnail},
        }


class BrowseRequest(BaseModel):
    """Page selection message sent by browsing clients."""

    page: int = Field(ge=0)
    fields: str | None = None
    filters: list[Any] = Field(default_factory=list)
