"""Utility helpers for EventHub."""

from __future__ import annotations

import re
import unicodedata
from datetime import UTC, date, datetime, time

_whitespace = re.compile(r"\s+")


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def clean_text(value: str | None) -> str:
    """Trim a value and collapse internal runs of whitespace."""
    normalized = unicodedata.normalize("NFKC", value or "")
    return _whitespace.sub(" ", normalized).strip()


def name_key(value: str | None) -> str:
    """Return the case-insensitive lookup key for a display name."""
    return clean_text(value).casefold()


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def isoformat_or_none(value: datetime | date | None) -> str | None:
    return value.isoformat() if value else None


def format_time(value: time | None) -> str | None:
    """Render a time of day as ``HH:MM``."""
    if value is None:
        return None
    return value.strftime("%H:%M")
