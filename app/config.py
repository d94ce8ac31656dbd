"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils import normalize_field_spec


REQUIRED_PAGE_FIELDS: tuple[str, ...] = (
    "title",
    "image.url",
    "image.thumbnail",
    "image.sexual",
    "description",
)
REQUIRED_DETAIL_FIELDS: tuple[str, ...] = (
    "title",
    "image.thumbnail",
    "image.sexual",
    "description",
)

DEFAULT_PAGE_FIELDS = ", ".join(REQUIRED_PAGE_FIELDS)
DEFAULT_DETAIL_FIELDS = ", ".join(REQUIRED_DETAIL_FIELDS)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="VNShelf", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    catalog_api_url: HttpUrl = Field(
        default="https://api.vndb.org/kana", alias="CATALOG_API_URL"
    )
    catalog_fields: str = Field(default=DEFAULT_PAGE_FIELDS, alias="CATALOG_FIELDS")
    detail_fields: str = Field(default=DEFAULT_DETAIL_FIELDS, alias="DETAIL_FIELDS")
    http_timeout_seconds: float = Field(
        default=20.0, alias="HTTP_TIMEOUT", gt=0, le=300
    )

    explicit_threshold: float = Field(
        default=0.4, alias="EXPLICIT_THRESHOLD", ge=0.0, le=1.0
    )
    initial_page: int = Field(default=1, alias="INITIAL_PAGE", ge=0)
    max_pages: int = Field(default=10, alias="MAX_PAGES", ge=1, le=10_000)

    database_url: str = Field(
        default="sqlite+aiosqlite:///./vnshelf.db", alias="DATABASE_URL"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("catalog_fields", mode="before")
    @classmethod
    def _parse_catalog_fields(cls, value: object) -> str:
        """Normalise the page field spec and keep the fields the cache needs."""

        return normalize_field_spec(value, required=REQUIRED_PAGE_FIELDS)

    @field_validator("detail_fields", mode="before")
    @classmethod
    def _parse_detail_fields(cls, value: object) -> str:
        return normalize_field_spec(value, required=REQUIRED_DETAIL_FIELDS)

    @field_validator("log_level", mode="before")
    @classmethod
    def _parse_log_level(cls, value: object) -> str:
        if value is None:
            return "INFO"
        level = str(value).strip().upper()
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return level

    @property
    def last_page(self) -> int:
        """Return the highest page number the browsing surface accepts."""

        return self.initial_page + self.max_pages - 1

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
