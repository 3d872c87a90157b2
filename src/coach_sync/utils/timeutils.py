"""UTC time helpers.

All timestamps inside coach-sync are timezone-aware UTC datetimes. The remote
platform reports ``timestamptz`` values with an offset; cached rows store ISO
strings. Naive values read from older rows are assumed to be UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(raw: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted) into aware UTC."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    text = str(raw).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def format_timestamp(value: datetime | None) -> str | None:
    """Serialize a datetime as ISO-8601 UTC, or None."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()
