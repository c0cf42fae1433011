"""
Clock-window helpers for the scheduling gates: quiet hours, optimal and avoid
windows, and weekend/holiday deferral. All checks run in the user's local time.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from nudge.models.domain.config_domain import TimeWindow
from nudge.models.domain.user_domain import QuietHours
from nudge.utils.business_calendar import next_business_day_start, parse_clock


def _at(day: date, clock: time, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, clock, tzinfo=zone)


def _contains(start: time, end: time, moment: time) -> bool:
    """Half-open [start, end) on a 24h clock; windows with start > end wrap midnight."""
    if start == end:
        return False
    if start < end:
        return start <= moment < end
    return moment >= start or moment < end


def in_quiet_hours(local: datetime, quiet: QuietHours) -> bool:
    if not quiet.enabled:
        return False
    return _contains(parse_clock(quiet.start), parse_clock(quiet.end), local.time())


def quiet_hours_end(local: datetime, quiet: QuietHours) -> datetime:
    """First quiet-hours end strictly after ``local`` (same timezone)."""
    end = parse_clock(quiet.end)
    candidate = _at(local.date(), end, local.tzinfo)
    if candidate <= local:
        candidate = _at(local.date() + timedelta(days=1), end, local.tzinfo)
    return candidate


def in_window(local: datetime, window: TimeWindow) -> bool:
    if local.weekday() not in window.days:
        return False
    return _contains(parse_clock(window.start), parse_clock(window.end), local.time())


def in_any_window(local: datetime, windows: Iterable[TimeWindow]) -> TimeWindow | None:
    for window in windows:
        if in_window(local, window):
            return window
    return None


def window_occurrences(
    window: TimeWindow, earliest: datetime, latest: datetime
) -> Iterator[tuple[datetime, datetime]]:
    """Occurrences of ``window`` overlapping [earliest, latest], in earliest's timezone."""
    zone = earliest.tzinfo
    start_clock = parse_clock(window.start)
    end_clock = parse_clock(window.end)
    day = earliest.date() - timedelta(days=1)
    while day <= latest.date():
        if day.weekday() in window.days:
            start = _at(day, start_clock, zone)
            end_day = day if end_clock > start_clock else day + timedelta(days=1)
            end = _at(end_day, end_clock, zone)
            if end > earliest and start <= latest:
                yield start, end
        day += timedelta(days=1)


def snap_to_optimal(
    earliest: datetime, latest: datetime, windows: Iterable[TimeWindow]
) -> tuple[datetime, TimeWindow] | None:
    """
    Pick the highest-weight window occurrence reachable between ``earliest``
    and ``latest``. Returns the first usable moment in that occurrence (``earliest``
    itself when it already falls inside). Ties go to the earlier moment.
    """
    best: tuple[float, datetime, TimeWindow] | None = None
    for window in windows:
        for start, _end in window_occurrences(window, earliest, latest):
            moment = max(start, earliest)
            if moment > latest:
                continue
            if best is None or window.weight > best[0] or (
                window.weight == best[0] and moment < best[1]
            ):
                best = (window.weight, moment, window)
    if best is None:
        return None
    return best[1], best[2]


def skip_avoid_windows(local: datetime, windows: Iterable[TimeWindow]) -> datetime:
    """Move ``local`` to the end of any avoid window it falls in."""
    windows = list(windows)
    for _ in range(len(windows) + 1):
        hit = in_any_window(local, windows)
        if hit is None:
            return local
        for start, end in window_occurrences(hit, local, local):
            if start <= local < end:
                local = end
                break
    return local


def is_non_business_day(local: datetime, respect_weekends: bool, holidays: Iterable[date]) -> bool:
    day = local.date()
    if respect_weekends and day.weekday() >= 5:
        return True
    return day in set(holidays)


def next_business_moment(
    local: datetime, start_hour: int, holidays: Iterable[date], respect_weekends: bool = True
) -> datetime:
    return next_business_day_start(
        local, start_hour=start_hour, holidays=holidays, weekends_off=respect_weekends
    )


def to_utc(moment: datetime) -> datetime:
    return moment.astimezone(UTC)
