from datetime import date, datetime, timedelta, timezone

import pytest
from melanjeux.utils.time import local_day_bounds, to_utc_naive, utc_naive_to_display


def test_to_utc_naive_requires_aware_datetime() -> None:
    with pytest.raises(ValueError):
        to_utc_naive(datetime(2026, 5, 1, 10, 0))


def test_to_utc_naive_converts_offset() -> None:
    aware = datetime(2026, 5, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_utc_naive(aware) == datetime(2026, 5, 1, 8, 0)


def test_display_conversion_follows_paris_offsets() -> None:
    assert utc_naive_to_display(datetime(2026, 1, 15, 12, 0)).hour == 13
    assert utc_naive_to_display(datetime(2026, 7, 15, 12, 0)).hour == 14


def test_local_day_bounds_cover_dst_change() -> None:
    # Clocks go forward on 2026-03-29 in Paris: that day lasts 23 hours.
    start, end = local_day_bounds(date(2026, 3, 29))
    assert start == datetime(2026, 3, 28, 23, 0)
    assert end == datetime(2026, 3, 29, 22, 0)
