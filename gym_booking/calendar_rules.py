"""
Bookability calendar: which hourly instants the studio offers at all.

Pure functions only. Every rule is evaluated on the wall-clock fields of the
instant it is given, so callers pass instants already converted to the studio
timezone (see `to_local`).
"""

from datetime import date, datetime, timedelta, timezone
from typing import Iterator
from zoneinfo import ZoneInfo

# (month, day)
FIXED_HOLIDAYS = frozenset(
    [
        (1, 1),
        (4, 25),
        (5, 1),
        (6, 2),
        (8, 15),
        (9, 19),
        (11, 1),
        (12, 25),
    ]
)

SATURDAY = 6
SUNDAY = 7

WEEKDAY_HOURS = range(7, 22)  # 07:00 .. 21:00 starts
SATURDAY_HOURS = range(7, 12)  # 07:00 .. 11:00 starts


def easter_date(year: int) -> date:
    """Gregorian Easter Sunday (anonymous Gregorian algorithm)"""
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7  # noqa: E741
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


def easter_monday(year: int) -> date:
    return easter_date(year) + timedelta(days=1)


def is_holiday(day: date) -> bool:
    """Fixed public holidays plus the Monday after Easter"""
    if (day.month, day.day) in FIXED_HOLIDAYS:
        return True
    return day == easter_monday(day.year)


def is_bookable(instant: datetime) -> bool:
    """
    Whether a slot starting at `instant` can be offered.

    Holidays are never bookable; Saturday only 07-11, Monday to Friday
    07-21, Sunday never.
    """
    if is_holiday(instant.date()):
        return False
    weekday = instant.isoweekday()
    if weekday == SUNDAY:
        return False
    if weekday == SATURDAY:
        return instant.hour in SATURDAY_HOURS
    return instant.hour in WEEKDAY_HOURS


def hourly_instants(start: datetime, end: datetime, zone: ZoneInfo) -> Iterator[datetime]:
    """
    Every instant in [start, end] that falls on a full local hour.

    Steps in absolute time so DST transitions neither repeat nor skip hours.
    """
    current = start.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)
    if current < start:
        current += timedelta(hours=1)
    while current <= end:
        local = current.astimezone(zone)
        if local.minute == 0 and local.second == 0:
            yield local
        current += timedelta(hours=1)


def to_local(instant: datetime, zone: ZoneInfo) -> datetime:
    """Convert to the studio timezone; naive values are taken as UTC"""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(zone)


def to_db_time(instant: datetime) -> datetime:
    """Storage format: naive UTC"""
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_time(value: datetime) -> datetime:
    """Inverse of `to_db_time`"""
    return value.replace(tzinfo=timezone.utc)
