"""
Notification Rate Limiter - sliding-window counters for delivered and pending
reminders per user.

Design:
- Sliding windows (hour, rolling day, rolling week) over reservation timestamps
- One reservation per scheduled notification, keyed by notification id
- Check and reserve happen under one lock, so two concurrent decisions can
  never both pass a boundary check
- Released reservations (cancelled or expired notifications) stop counting;
  delivered ones keep counting until they age out of the week window

Usage:
    limiter = NotificationRateLimiter()
    limits = CapLimits(per_hour=3, per_day=8, type_per_day=3)
    limiter.try_reserve(user_id, reservation, limits, now)
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from pydantic import BaseModel

from nudge.errors import RateLimitExceeded
from nudge.infrastructure.observability.logging import get_logger
from nudge.models.domain.enums import NotificationType

logger = get_logger(__name__)

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)
WEEK = timedelta(days=7)


class Reservation(BaseModel):
    notification_id: str
    notification_type: NotificationType
    reserved_at: datetime
    scheduled_for: datetime


@dataclass(slots=True)
class WindowCounts:
    hour: int = 0
    day: int = 0
    week: int = 0
    type_day: int = 0
    last_of_type: datetime | None = None


@dataclass(slots=True)
class CapLimits:
    per_hour: int
    per_day: int
    type_per_day: int
    budget_day: int | None = None
    budget_week: int | None = None


@dataclass(slots=True)
class CapViolation:
    window: str
    used: int
    limit: int
    reset_time: datetime

    def describe(self) -> str:
        return f"{self.window} limit reached ({self.used}/{self.limit})"


class NotificationRateLimiter:
    """
    In-process view of each user's sent log.

    The persisted sent log is authoritative: callers ``sync`` from it while
    holding the user's store lock, mutate, then save the ``snapshot`` back.

    Thread Safety:
        A single lock guards every read-modify-write, so ``try_reserve`` is an
        atomic check-then-increment within the process.
    """

    def __init__(self):
        self._reservations: dict[str, list[Reservation]] = {}
        self._lock = threading.Lock()

    def sync(self, user_id: str, reservations: list[Reservation]) -> None:
        """Replace the user's counters with the persisted sent log."""
        with self._lock:
            self._reservations[user_id] = list(reservations)

    def snapshot(self, user_id: str) -> list[Reservation]:
        with self._lock:
            return list(self._reservations.get(user_id, []))

    def counts(
        self,
        user_id: str,
        now: datetime,
        notification_type: NotificationType | None = None,
    ) -> WindowCounts:
        with self._lock:
            return self._counts(user_id, now, notification_type)

    def violations(self, counts: WindowCounts, limits: CapLimits, now: datetime) -> list[CapViolation]:
        """Every cap the counts already meet or exceed (empty when a new reminder fits)."""
        checks = [
            ("hourly", counts.hour, limits.per_hour, now + HOUR),
            ("daily", counts.day, limits.per_day, now + DAY),
            ("type daily", counts.type_day, limits.type_per_day, now + DAY),
        ]
        if limits.budget_day is not None:
            checks.append(("workload daily budget", counts.day, limits.budget_day, now + DAY))
        if limits.budget_week is not None:
            checks.append(("workload weekly budget", counts.week, limits.budget_week, now + WEEK))

        return [
            CapViolation(window=window, used=used, limit=limit, reset_time=reset)
            for window, used, limit, reset in checks
            if used >= limit
        ]

    def try_reserve(
        self,
        user_id: str,
        reservation: Reservation,
        limits: CapLimits,
        now: datetime,
    ) -> WindowCounts:
        """
        Atomically check the caps and record the reservation.

        Re-reserving an id that is already held is a no-op.

        Raises:
            RateLimitExceeded: If any cap is already met
        """
        with self._lock:
            held = self._reservations.setdefault(user_id, [])
            if any(r.notification_id == reservation.notification_id for r in held):
                return self._counts(user_id, now, reservation.notification_type)

            counts = self._counts(user_id, now, reservation.notification_type)
            violations = self.violations(counts, limits, now)
            if violations:
                first = violations[0]
                logger.warning(
                    "Notification reservation rejected",
                    user_id=user_id,
                    notification_id=reservation.notification_id,
                    window=first.window,
                    used=first.used,
                    limit=first.limit,
                )
                raise RateLimitExceeded(
                    f"Notification {first.describe()}",
                    used=first.used,
                    limit=first.limit,
                    window=first.window,
                    reset_time=first.reset_time,
                )

            held.append(reservation)
            counts.hour += 1
            counts.day += 1
            counts.week += 1
            counts.type_day += 1
            return counts

    def release(self, user_id: str, notification_id: str) -> bool:
        with self._lock:
            held = self._reservations.get(user_id, [])
            for reservation in held:
                if reservation.notification_id == notification_id:
                    held.remove(reservation)
                    return True
        return False

    def _counts(
        self, user_id: str, now: datetime, notification_type: NotificationType | None
    ) -> WindowCounts:
        held = self._reservations.get(user_id, [])
        # Drop entries older than the widest window
        held[:] = [r for r in held if r.reserved_at > now - WEEK]

        counts = WindowCounts()
        for r in held:
            if r.reserved_at > now - HOUR:
                counts.hour += 1
            if r.reserved_at > now - DAY:
                counts.day += 1
                if notification_type is not None and r.notification_type == notification_type:
                    counts.type_day += 1
            counts.week += 1
            if notification_type is not None and r.notification_type == notification_type:
                if counts.last_of_type is None or r.scheduled_for > counts.last_of_type:
                    counts.last_of_type = r.scheduled_for
        return counts
