"""
Business-day and clock-time helpers shared by the deadline analyzer and the
scheduling gates.
"""

import re
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta

CLOCK_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

BUSINESS_HOUR_START = 9
BUSINESS_HOUR_END = 17


def parse_clock(value: str) -> time:
    """Parse an ``HH:MM`` string into a time; raises ValueError on malformed input."""
    match = CLOCK_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Expected HH:MM clock time, got {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def is_business_day(day: date, holidays: Iterable[date] = (), weekends_off: bool = True) -> bool:
    if weekends_off and day.weekday() >= 5:
        return False
    return day not in set(holidays)


def is_business_hour(moment: datetime) -> bool:
    return BUSINESS_HOUR_START <= moment.hour < BUSINESS_HOUR_END


def business_days_between(start: date, end: date, holidays: Iterable[date] = ()) -> int:
    """
    Signed count of business days from ``start`` to ``end``.

    Counts the dates in ``(start, end]`` when end is later, and the negated
    count of ``(end, start]`` when end is earlier. Same date yields 0.
    """
    if start == end:
        return 0
    holiday_set = set(holidays)
    sign = 1
    if end < start:
        start, end = end, start
        sign = -1

    count = 0
    current = start + timedelta(days=1)
    while current <= end:
        if is_business_day(current, holiday_set):
            count += 1
        current += timedelta(days=1)
    return sign * count


def add_business_hours(start: datetime, hours: float, holidays: Iterable[date] = ()) -> datetime:
    """Walk forward hour by hour, consuming only business hours on business days."""
    holiday_set = set(holidays)
    remaining = hours
    current = start
    while remaining > 0:
        if is_business_day(current.date(), holiday_set) and is_business_hour(current):
            step = min(1.0, remaining)
            remaining -= step
            current += timedelta(hours=step)
        else:
            current += timedelta(hours=1)
    return current


def next_business_day_start(
    moment: datetime,
    start_hour: int = BUSINESS_HOUR_START,
    holidays: Iterable[date] = (),
    weekends_off: bool = True,
) -> datetime:
    """
    First business-day opening at or after ``moment`` (same tzinfo as ``moment``).

    With ``weekends_off`` False only holidays are skipped.
    """
    holiday_set = set(holidays)
    candidate = moment.replace(hour=start_hour, minute=0, second=0, microsecond=0)
    if candidate < moment:
        candidate += timedelta(days=1)
    while not is_business_day(candidate.date(), holiday_set, weekends_off):
        candidate += timedelta(days=1)
    return candidate
