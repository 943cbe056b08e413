from __future__ import annotations

import datetime as dt
import math
from typing import Optional, Tuple

from zoneinfo import ZoneInfo

UTC = dt.timezone.utc
SECONDS_PER_HOUR = 3600.0


def as_utc(value: dt.datetime) -> dt.datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def optional_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None:
        return None
    return as_utc(value)


def resolve_timezone(tz: Optional[dt.tzinfo | str]) -> dt.tzinfo:
    if tz is None:
        from .config import settings

        return ZoneInfo(settings.timezone)
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def day_bounds(day: dt.date, tz: Optional[dt.tzinfo | str] = None) -> Tuple[dt.datetime, dt.datetime]:
    zone = resolve_timezone(tz)
    start_local = dt.datetime.combine(day, dt.time.min, tzinfo=zone)
    end_local = start_local + dt.timedelta(days=1)
    return start_local.astimezone(UTC), end_local.astimezone(UTC)


def local_day(value: dt.datetime, tz: Optional[dt.tzinfo | str] = None) -> dt.date:
    return as_utc(value).astimezone(resolve_timezone(tz)).date()


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def workday_bounds(
    day: dt.date,
    start_hour: int,
    end_hour: int,
    tz: Optional[dt.tzinfo | str] = None,
) -> Tuple[dt.datetime, dt.datetime]:
    """UTC bounds of the local working hours on ``day``."""
    zone = resolve_timezone(tz)
    midnight = day_bounds(day, zone)[0].astimezone(zone)
    start = midnight + dt.timedelta(hours=start_hour)
    end = midnight + dt.timedelta(hours=end_hour)
    return start.astimezone(UTC), end.astimezone(UTC)
