from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from ..config import get_settings


@lru_cache
def display_zone() -> ZoneInfo:
    return ZoneInfo(get_settings().display_timezone)


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def utc_naive_to_display(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc).astimezone(display_zone())


def local_day_bounds(day: date) -> tuple[datetime, datetime]:
    """UTC-naive [start, end) of a calendar day in the display zone (DST-safe)."""
    zone = display_zone()
    start = datetime.combine(day, datetime.min.time(), tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), datetime.min.time(), tzinfo=zone)
    return to_utc_naive(start), to_utc_naive(end)
