from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from calboard.utils import (
    format_event_date,
    humanize_time,
    isoformat_utc,
    local_to_utc,
    parse_instant,
    to_naive_utc,
)


def test_parse_instant_accepts_z_and_offsets():
    assert parse_instant("2025-04-01T10:00:00Z") == datetime(2025, 4, 1, 10, 0)
    assert parse_instant("2025-04-01T12:00:00+02:00") == datetime(2025, 4, 1, 10, 0)
    assert parse_instant("2025-04-01") == datetime(2025, 4, 1)


def test_parse_instant_rejects_garbage():
    assert parse_instant(None) is None
    assert parse_instant("") is None
    assert parse_instant("next tuesday") is None


def test_format_event_date_states():
    assert format_event_date(None) == "No date"
    assert format_event_date("soon") == "Invalid date"
    assert format_event_date("2025-04-01T10:00:00Z") == "2025-04-01 (Tue)"


def test_local_to_utc_uses_browser_offset():
    local = datetime(2025, 6, 1, 9, 0)
    assert local_to_utc(local, 0) == local
    assert local_to_utc(local, -120) == datetime(2025, 6, 1, 7, 0)
    assert local_to_utc(local, "300") == datetime(2025, 6, 1, 14, 0)
    assert local_to_utc(local, "garbage") == local


def test_aware_values_become_naive_utc():
    aware = datetime(2025, 6, 1, 9, 0, tzinfo=timezone(timedelta(hours=3)))
    assert to_naive_utc(aware) == datetime(2025, 6, 1, 6, 0)
    assert local_to_utc(aware, 999) == datetime(2025, 6, 1, 6, 0)
    assert isoformat_utc(datetime(2025, 6, 1, 6, 0, tzinfo=UTC)) == "2025-06-01T06:00:00Z"


def test_humanize_time():
    now = datetime(2025, 1, 1, 12, 0)
    assert humanize_time(now + timedelta(days=14), now=now) == "in 14 days"
    assert humanize_time(now - timedelta(hours=3), now=now) == "3 hours ago"
    assert humanize_time(now - timedelta(seconds=5), now=now) == "moments ago"
    assert humanize_time(None) == ""
