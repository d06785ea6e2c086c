"""Utility helpers for GuestPass."""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalize aware datetimes to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def format_event_date(value: datetime) -> str:
    """Return a long human date such as 'Monday, January 6, 2025 6:30 PM'."""
    hour = value.hour % 12 or 12
    return (
        f"{value:%A}, {value:%B} {value.day}, {value.year} "
        f"{hour}:{value:%M} {value:%p}"
    )


def is_past(value: datetime | None, *, now: datetime | None = None) -> bool:
    if not value:
        return False
    return value < (now or utcnow())


def join_url(base_url: str, path: str) -> str:
    """Join an origin and an absolute path without doubling slashes."""
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"
