"""Datetime parsing: lax network timestamps in, strict UTC strings out."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum

# Strict storage format: YYYY-MM-DD HH:MM:SS.ffffff+0000. Always UTC so that
# stored strings sort chronologically.
STRICT_FORMAT = "%Y-%m-%d %H:%M:%S.%f%z"


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts ISO 8601 variants as returned by X (``2024-05-01T10:00:00.000Z``)
    and the AT Protocol (``2024-05-01T10:00:00.123456+00:00``), as well as
    the strict storage format. Missing timezone defaults to ``default_tz``.
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


def format_datetime(dt: datetime) -> str:
    """Format a datetime to the strict storage format, converted to UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(STRICT_FORMAT)


def normalize_timestamp(value: str | datetime) -> str:
    """Parse a network timestamp and return it in the strict storage format."""
    return format_datetime(parse_datetime(value))


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def now_str() -> str:
    """Return the current UTC time in the strict storage format."""
    return format_datetime(now_utc())


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for JSON serialization and AT Protocol records."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()
