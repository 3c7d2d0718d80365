"""Utility helpers for EventHub."""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert aware datetimes to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def parse_datetime(raw: str | datetime) -> datetime:
    """Parse an ISO8601 string (a trailing ``Z`` is accepted) into naive UTC.

    Raises ``ValueError`` when the value cannot be parsed.
    """
    if isinstance(raw, datetime):
        return to_naive_utc(raw)
    if not isinstance(raw, str):
        raise TypeError(f"Cannot parse datetime from {type(raw).__name__}")
    cleaned = raw.strip()
    if not cleaned:
        raise ValueError("Empty datetime")
    if cleaned.endswith(("Z", "z")):
        cleaned = f"{cleaned[:-1]}+00:00"
    return to_naive_utc(datetime.fromisoformat(cleaned))


def isoformat_utc(value: datetime | None) -> str | None:
    """Render a stored naive UTC datetime as ISO8601 with a ``Z`` suffix."""
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat() + "Z"
