"""Datetime parsing for provider timestamps."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts ISO 8601 variants as returned by cloud APIs, e.g.
    ``2026-02-02T22:21:29.975Z`` or ``2026-02-02 22:21:29+00:00``.
    Missing timezone defaults to default_tz.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def to_unix(dt: datetime) -> int:
    """Convert a datetime to whole Unix seconds, treating naive values as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def unix_now() -> int:
    """Return the current time as Unix seconds."""
    return to_unix(now_utc())
