"""Utility helpers for the VNShelf service."""

from __future__ import annotations

import re
from typing import Iterable


FROM_LINK_RE = re.compile(r"\[FROM\[url=[^\]]*\](.*?)\[/url\]\]", re.DOTALL)
LINK_RE = re.compile(r"\[url=[^\]]*\](.*?)\[/url\]", re.DOTALL)
TAG_RE = re.compile(r"\[/?[a-zA-Z][^\]]*\]")


def normalize_field_spec(
    value: object, *, required: Iterable[str] = ()
) -> str:
    """Return a comma-separated field spec with duplicates and blanks removed.

    Fields listed in ``required`` are appended when missing so callers can
    narrow a request without dropping what the cache depends on.
    """

    if value is None:
        raw_values: list[str] = []
    elif isinstance(value, str):
        raw_values = value.split(",")
    elif isinstance(value, Iterable):
        raw_values = [str(part) for part in value]
    else:
        raise TypeError("Field specs must be a string or iterable of strings")

    cleaned: list[str] = []
    for entry in [*raw_values, *required]:
        field = entry.strip().lower()
        if field and field not in cleaned:
            cleaned.append(field)
    if not cleaned:
        raise ValueError("Field spec must name at least one field")
    return ", ".join(cleaned)


def strip_bbcode(value: str) -> str:
    """Remove VNDB BBCode markup while keeping link text."""

    value = FROM_LINK_RE.sub(r"\1", value)
    value = LINK_RE.sub(r"\1", value)
    value = TAG_RE.sub("", value)
    return value.strip()
