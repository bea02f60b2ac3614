"""Utility helpers for Calboard."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def local_to_utc(dt: datetime, offset_minutes: int | str | None) -> datetime:
    """Normalize a naive local datetime to UTC (still naive).

    ``offset_minutes`` follows the browser's ``Date.getTimezoneOffset()``
    convention: minutes to add to local time to reach UTC.
    """
    if dt.tzinfo is not None:
        return to_naive_utc(dt)
    try:
        offset = int(offset_minutes or 0)
    except (TypeError, ValueError):
        offset = 0
    return dt + timedelta(minutes=offset)


def isoformat_utc(value: datetime) -> str:
    """Render a datetime as an ISO-8601 UTC string with a ``Z`` suffix."""
    naive = to_naive_utc(value)
    return naive.isoformat() + "Z"


def parse_instant(raw: str | None) -> datetime | None:
    """Parse an ISO-8601 string to a naive UTC datetime, or ``None``."""
    if not raw or not isinstance(raw, str):
        return None
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_naive_utc(parsed)


def format_event_date(raw: str | None) -> str:
    """Return a short calendar label such as ``2025-04-01 (Tue)``."""
    if not raw:
        return "No date"
    parsed = parse_instant(raw)
    if parsed is None:
        return "Invalid date"
    return parsed.strftime("%Y-%m-%d (%a)")


def humanize_time(value: datetime | None, *, now: datetime | None = None) -> str:
    """Return a friendly string such as 'in 2 weeks' or '3 hours ago'."""
    if not value:
        return ""
    now = now or utcnow()
    delta_seconds = (to_naive_utc(value) - now).total_seconds()
    past = delta_seconds < 0
    seconds = abs(delta_seconds)

    units = [
        ("year", 365 * 24 * 3600),
        ("month", 30 * 24 * 3600),
        ("day", 24 * 3600),
        ("hour", 3600),
        ("minute", 60),
    ]

    for name, step in units:
        amount = int(seconds // step)
        if amount >= 1:
            label = name if amount == 1 else f"{name}s"
            return f"{amount} {label} ago" if past else f"in {amount} {label}"
    return "moments ago" if past else "in moments"
