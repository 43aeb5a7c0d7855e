"""Common timestamp helpers for persisted documents."""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def to_iso(value: datetime) -> str:
    """Render UTC timestamp as ISO-8601 with millisecond precision and `Z` suffix."""

    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def from_iso(value: str) -> datetime:
    """Parse ISO datetime and ensure timezone-aware UTC fallback."""

    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
