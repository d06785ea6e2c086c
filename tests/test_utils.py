from __future__ import annotations

from datetime import datetime, timedelta, timezone

from guestpass.utils import format_event_date, is_past, join_url, to_naive_utc


def test_format_event_date_uses_long_english_form():
    assert format_event_date(datetime(2025, 1, 6, 18, 30)) == "Monday, January 6, 2025 6:30 PM"
    assert format_event_date(datetime(2025, 3, 9, 0, 5)) == "Sunday, March 9, 2025 12:05 AM"


def test_to_naive_utc_converts_aware_values():
    aware = datetime(2025, 6, 1, 9, 0, tzinfo=timezone(timedelta(hours=-4)))
    assert to_naive_utc(aware) == datetime(2025, 6, 1, 13, 0)
    naive = datetime(2025, 6, 1, 9, 0)
    assert to_naive_utc(naive) is naive
    assert to_naive_utc(None) is None


def test_is_past_compares_against_now():
    now = datetime(2024, 1, 1, 12, 0, 0)
    assert is_past(now - timedelta(minutes=1), now=now)
    assert not is_past(now + timedelta(minutes=1), now=now)
    assert not is_past(None, now=now)


def test_join_url_avoids_double_slashes():
    assert join_url("https://example.com/", "/invitation/abc") == "https://example.com/invitation/abc"
    assert join_url("https://example.com", "invitation/abc") == "https://example.com/invitation/abc"
