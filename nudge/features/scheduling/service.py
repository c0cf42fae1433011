"""
Scheduling decision engine - turns urgency, workload and preferences into a
go/no-go decision with a concrete delivery time, and owns each user's
notification queue.

Decisions are synchronous and CPU-only. Queue operations load and save through
the repository under the user's store lock, so one user's queue and sent log
have a single writer across every worker process. The sent log is re-read
inside that lock before each rewrite; the in-process counters are only a cache
of it.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta

from nudge.context import EngineContext
from nudge.errors import SchedulingError, StoreError
from nudge.features.scheduling import time_windows
from nudge.features.scheduling.adaptive import learned_time_window
from nudge.features.scheduling.rate_limiter import (
    CapLimits,
    NotificationRateLimiter,
    Reservation,
)
from nudge.infrastructure.observability.logging import get_logger
from nudge.models.domain.analysis_domain import UrgencyAssessment
from nudge.models.domain.enums import (
    CapacityLevel,
    NotificationStatus,
    NotificationType,
    Priority,
    QuietHoursPolicy,
)
from nudge.models.domain.notification_domain import (
    NotificationQueue,
    QueuedNotification,
    ScheduledNotification,
    SchedulingDecision,
)
from nudge.models.domain.user_domain import LearnedWindow, UserPreferences, UserWorkloadProfile
from nudge.models.domain.work_item import as_utc
from nudge.repositories.notification_repository import NotificationRepository

logger = get_logger(__name__)

VETO_RETRY_DELAY = timedelta(hours=1)
WORKLOAD_CONFIDENCE_FACTOR = 0.3
QUIET_VETO_CONFIDENCE_FACTOR = 0.1
QUIET_DEFER_CONFIDENCE_FACTOR = 0.3
NON_BUSINESS_DEFER_CONFIDENCE_FACTOR = 0.8

# Terminal states that stop counting against the caps; delivered ones keep counting
RELEASING_STATUSES = (NotificationStatus.CANCELLED, NotificationStatus.EXPIRED)


class SchedulingDecisionEngine:
    def __init__(
        self,
        ctx: EngineContext,
        repository: NotificationRepository,
        rate_limiter: NotificationRateLimiter | None = None,
    ):
        self.ctx = ctx
        self.config = ctx.config.scheduling
        self.repository = repository
        self.rate_limiter = rate_limiter or NotificationRateLimiter()

    # =================================================================
    # DECISIONS
    # =================================================================

    async def load_user(self, user_id: str) -> None:
        """Refresh the user's counters from the stored sent log before deciding."""
        try:
            reservations = await self.repository.get_sent_log(user_id, critical=True)
        except StoreError as e:
            logger.warning("Sent log unavailable, deciding on cached counters", user_id=user_id, error=e.message)
            return
        self.rate_limiter.sync(user_id, reservations)

    async def _sync_counters(self, user_id: str) -> None:
        # Caller holds the user lock; a failed read must abort the rewrite
        self.rate_limiter.sync(user_id, await self.repository.get_sent_log(user_id, critical=True))

    async def _save_sent_log(self, user_id: str) -> None:
        await self.repository.save_sent_log(user_id, self.rate_limiter.snapshot(user_id))

    def decide(
        self,
        user_id: str,
        item_id: str,
        notification_type: NotificationType,
        priority: Priority,
        urgency: UrgencyAssessment | None,
        workload: UserWorkloadProfile,
        preferences: UserPreferences,
        now: datetime | None = None,
        learned_window: LearnedWindow | None = None,
    ) -> SchedulingDecision:
        """
        Decide whether and when to send one reminder.

        Gates run in order (preferences, caps, workload, quiet hours and
        non-business days, minimum spacing); each can veto and attaches a
        reason. Vetoes are normal decisions, never errors.
        """
        now = as_utc(now or self.ctx.now())
        limits = self.config.global_limits
        type_config = self.config.for_type(notification_type)
        reasoning: list[str] = []
        confidence = 1.0
        should_schedule = True
        deferred = False
        defer_until: datetime | None = None
        local_now = preferences.local(now)

        # Preferences
        if not preferences.notifications_enabled:
            should_schedule = False
            confidence = 0.0
            reasoning.append("User has turned reminders off")
        elif notification_type not in preferences.enabled_types:
            should_schedule = False
            confidence = 0.0
            reasoning.append(f"User has disabled {notification_type.value} reminders")

        # Global, per-type and workload-budget caps
        counts = self.rate_limiter.counts(user_id, now, notification_type)
        cap_limits = CapLimits(
            per_hour=limits.max_per_hour,
            per_day=limits.max_per_day,
            type_per_day=type_config.max_daily_count,
            budget_day=workload.daily_budget,
            budget_week=workload.weekly_budget,
        )
        violations = self.rate_limiter.violations(counts, cap_limits, now)
        if violations:
            should_schedule = False
            confidence = 0.0
            reasoning.extend(v.describe() for v in violations)

        # Workload gate: soft, urgent reminders still pass
        if workload.capacity_level == CapacityLevel.OVERLOADED and priority != Priority.URGENT:
            should_schedule = False
            confidence *= WORKLOAD_CONFIDENCE_FACTOR
            reasoning.append("User workload is overloaded; only urgent reminders go through")

        # Quiet hours, weekends and holidays
        if self._respects_quiet_hours(preferences) and time_windows.in_quiet_hours(
            local_now, preferences.quiet_hours
        ):
            quiet = preferences.quiet_hours
            if limits.quiet_hours_policy == QuietHoursPolicy.VETO:
                should_schedule = False
                confidence *= QUIET_VETO_CONFIDENCE_FACTOR
                reasoning.append(f"Inside quiet hours ({quiet.start}-{quiet.end})")
            else:
                defer_until = time_windows.quiet_hours_end(local_now, quiet)
                deferred = True
                confidence *= QUIET_DEFER_CONFIDENCE_FACTOR
                reasoning.append(f"Inside quiet hours; deferred to {quiet.end}")
        elif priority != Priority.URGENT and self._is_non_business_day(local_now):
            defer_until = self._next_business_moment(local_now, preferences)
            deferred = True
            confidence *= NON_BUSINESS_DEFER_CONFIDENCE_FACTOR
            reasoning.append("Weekend or holiday; deferred to the next business morning")

        # Minimum spacing since the last reminder of this type
        if type_config.min_interval_minutes > 0 and counts.last_of_type is not None:
            elapsed = now - counts.last_of_type
            spacing = timedelta(minutes=type_config.min_interval_minutes)
            if elapsed < spacing:
                should_schedule = False
                reasoning.append(
                    f"Last {notification_type.value} was {int(elapsed.total_seconds() // 60)} "
                    f"minutes ago; minimum spacing is {type_config.min_interval_minutes} minutes"
                )

        if should_schedule:
            scheduled_time, time_deferred = self._target_time(
                notification_type, priority, preferences, now, defer_until, learned_window, reasoning
            )
            deferred = deferred or time_deferred
        else:
            scheduled_time = now + VETO_RETRY_DELAY

        decision = SchedulingDecision(
            user_id=user_id,
            item_id=item_id,
            notification_type=notification_type,
            priority=priority,
            should_schedule=should_schedule,
            scheduled_time=scheduled_time,
            reasoning=reasoning,
            alternatives=[
                scheduled_time + timedelta(hours=offset)
                for offset in self.config.alternative_offsets_hours[:3]
            ],
            confidence=round(max(0.0, min(1.0, confidence)), 4),
            deferred=deferred,
            decided_at=now,
            urgency=urgency,
            daily_budget=workload.daily_budget,
            weekly_budget=workload.weekly_budget,
        )

        logger.info(
            "Scheduling decision",
            user_id=user_id,
            item_id=item_id,
            notification_type=notification_type.value,
            priority=priority.value,
            should_schedule=should_schedule,
            scheduled_time=scheduled_time.isoformat(),
            confidence=decision.confidence,
            reason="; ".join(reasoning),
        )
        return decision

    def recheck(
        self,
        notification: ScheduledNotification,
        preferences: UserPreferences,
        now: datetime | None = None,
    ) -> tuple[bool, str | None, datetime | None]:
        """
        Re-run the time-sensitive gates at pickup time.

        Returns ``(proceed, reason, defer_until)``. A reason with no
        ``defer_until`` means the reminder should not be sent at all.
        """
        now = as_utc(now or self.ctx.now())
        if not preferences.notifications_enabled:
            return False, "User has turned reminders off", None
        if notification.notification_type not in preferences.enabled_types:
            return False, f"User has disabled {notification.notification_type.value} reminders", None

        local_now = preferences.local(now)
        if self._respects_quiet_hours(preferences) and time_windows.in_quiet_hours(
            local_now, preferences.quiet_hours
        ):
            end = time_windows.quiet_hours_end(local_now, preferences.quiet_hours)
            return False, "Inside quiet hours at pickup", time_windows.to_utc(end)
        if notification.priority != Priority.URGENT and self._is_non_business_day(local_now):
            moment = self._next_business_moment(local_now, preferences)
            return False, "Non-business day at pickup", time_windows.to_utc(moment)
        return True, None, None

    def _respects_quiet_hours(self, preferences: UserPreferences) -> bool:
        return self.config.global_limits.respect_quiet_hours and preferences.respect_quiet_hours

    def _is_non_business_day(self, local: datetime) -> bool:
        limits = self.config.global_limits
        holidays = self.config.holidays if limits.respect_holidays else []
        return time_windows.is_non_business_day(local, limits.respect_weekends, holidays)

    def _next_business_moment(self, local: datetime, preferences: UserPreferences) -> datetime:
        limits = self.config.global_limits
        holidays = self.config.holidays if limits.respect_holidays else []
        return time_windows.next_business_moment(
            local, preferences.working_hours.start_hour, holidays, respect_weekends=limits.respect_weekends
        )

    def _target_time(
        self,
        notification_type: NotificationType,
        priority: Priority,
        preferences: UserPreferences,
        now: datetime,
        defer_until: datetime | None,
        learned_window: LearnedWindow | None,
        reasoning: list[str],
    ) -> tuple[datetime, bool]:
        """
        Earliest allowed time, snapped to the best optimal window within the
        type's maximum interval, then pushed out of avoid windows, quiet hours
        and non-business days.
        """
        type_config = self.config.for_type(notification_type)
        multiplier = self.config.priority_multipliers.get(priority, 1.0)
        earliest = now + timedelta(minutes=type_config.min_interval_minutes * multiplier)
        if defer_until is not None:
            earliest = max(earliest, time_windows.to_utc(defer_until))

        earliest_local = preferences.local(earliest)
        latest_local = earliest_local + timedelta(minutes=type_config.max_interval_minutes)

        windows = list(type_config.optimal_windows)
        if learned_window is not None and self.config.adaptive.enabled:
            windows.append(learned_time_window(learned_window, self.config.adaptive.learned_window_weight))

        snapped = time_windows.snap_to_optimal(earliest_local, latest_local, windows)
        if snapped is not None:
            target, window = snapped
            label = f" ({window.label})" if window.label else ""
            reasoning.append(
                f"Scheduled in optimal window {window.start}-{window.end}{label} weight {window.weight}"
            )
        else:
            target = earliest_local
            reasoning.append("No optimal window in range; using earliest allowed time")

        target = time_windows.skip_avoid_windows(target, type_config.avoid_windows)

        deferred = False
        # Alternate until the candidate is clear of both constraints
        for _ in range(3):
            moved = False
            if self._respects_quiet_hours(preferences) and time_windows.in_quiet_hours(
                target, preferences.quiet_hours
            ):
                target = time_windows.quiet_hours_end(target, preferences.quiet_hours)
                moved = True
            if priority != Priority.URGENT and self._is_non_business_day(target):
                target = self._next_business_moment(target, preferences)
                moved = True
            if not moved:
                break
            deferred = True

        if deferred:
            reasoning.append("Candidate time moved out of quiet hours or non-business days")
        return time_windows.to_utc(target), deferred

    # =================================================================
    # QUEUE
    # =================================================================

    async def get_queue(self, user_id: str) -> NotificationQueue:
        return await self.repository.get_queue(user_id)

    async def enqueue(self, decision: SchedulingDecision) -> ScheduledNotification:
        """
        Insert an accepted decision into the user's queue.

        A non-terminal notification for the same (user, item, type) is
        returned unchanged instead of creating a second one.

        Raises:
            SchedulingError: If the decision was a veto
            RateLimitExceeded: If the cap reservation loses to another decision
        """
        if not decision.should_schedule:
            raise SchedulingError(
                "Cannot enqueue a vetoed decision", errors=list(decision.reasoning), recoverable=True
            )

        user_id = decision.user_id

        async with self.repository.user_lock(user_id):
            queue = await self.repository.get_queue(user_id)
            existing = queue.active_for(decision.item_id, decision.notification_type)
            if existing is not None:
                logger.info(
                    "Duplicate enqueue returned existing notification",
                    user_id=user_id,
                    item_id=decision.item_id,
                    notification_id=existing.id,
                )
                return existing

            now = self.ctx.now()
            type_config = self.config.for_type(decision.notification_type)
            notification = ScheduledNotification(
                id=self.ctx.new_id("ntf"),
                user_id=user_id,
                item_id=decision.item_id,
                notification_type=decision.notification_type,
                priority=decision.priority,
                scheduled_for=decision.scheduled_time,
                created_at=now,
                max_attempts=self.config.retry.max_attempts,
                backoff_multiplier=type_config.backoff_multiplier,
                urgency=decision.urgency,
                item_summary=decision.item_summary,
            )

            limits = self.config.global_limits
            await self._sync_counters(user_id)
            self.rate_limiter.try_reserve(
                user_id,
                Reservation(
                    notification_id=notification.id,
                    notification_type=notification.notification_type,
                    reserved_at=now,
                    scheduled_for=notification.scheduled_for,
                ),
                CapLimits(
                    per_hour=limits.max_per_hour,
                    per_day=limits.max_per_day,
                    type_per_day=type_config.max_daily_count,
                    budget_day=decision.daily_budget,
                    budget_week=decision.weekly_budget,
                ),
                now,
            )

            batchable = type_config.can_be_batched
            queue.insert(
                QueuedNotification(
                    notification=notification,
                    priority_score=self.config.composite_priority(
                        notification.priority, notification.notification_type
                    ),
                    can_be_batched=batchable,
                    batch_key=self.batch_key(notification) if batchable else None,
                )
            )

            await self._save_sent_log(user_id)
            try:
                await self.repository.register_user(user_id)
                await self.repository.save_queue(queue)
            except Exception:
                # Nothing was queued; give the reservation back
                self.rate_limiter.release(user_id, notification.id)
                await self._save_sent_log(user_id)
                raise

        logger.info(
            "Notification enqueued",
            user_id=user_id,
            item_id=notification.item_id,
            notification_id=notification.id,
            scheduled_for=notification.scheduled_for.isoformat(),
            priority_score=queue.find(notification.id).priority_score,
        )
        return notification

    @staticmethod
    def batch_key(notification: ScheduledNotification) -> str:
        return f"{notification.notification_type.value}-{notification.scheduled_for.date().isoformat()}"

    async def get_ready_for_delivery(
        self, user_id: str, max_count: int, now: datetime | None = None
    ) -> list[QueuedNotification]:
        """Pending notifications whose time has come, in composite-priority order."""
        now = as_utc(now or self.ctx.now())
        queue = await self.repository.get_queue(user_id)
        return queue.ready(now, max_count)

    async def mark_queued(
        self, user_id: str, notification_ids: list[str], now: datetime | None = None
    ) -> list[ScheduledNotification]:
        """Hand ready notifications to the pipeline (pending -> queued)."""
        now = as_utc(now or self.ctx.now())
        marked = []
        async with self.repository.user_lock(user_id):
            queue = await self.repository.get_queue(user_id)
            for notification_id in notification_ids:
                entry = queue.find(notification_id)
                if entry is None or entry.notification.status != NotificationStatus.PENDING:
                    continue
                entry.notification.status = NotificationStatus.QUEUED
                entry.notification.queued_at = now
                marked.append(entry.notification)
            if marked:
                queue.reorder()
                await self.repository.save_queue(queue)
        return marked

    async def return_to_pending(
        self,
        user_id: str,
        notification_ids: list[str] | None,
        reason: str,
        queued_before: datetime | None = None,
    ) -> list[ScheduledNotification]:
        """
        Undo ``mark_queued`` for notifications whose run never started; no attempt is counted.

        ``None`` ids selects every queued notification of the user. With
        ``queued_before`` only those queued at or before that moment (or with
        no stamp) are returned.
        """
        restored = []
        async with self.repository.user_lock(user_id):
            queue = await self.repository.get_queue(user_id)
            if notification_ids is None:
                notification_ids = [entry.notification.id for entry in queue.entries]
            for notification_id in notification_ids:
                entry = queue.find(notification_id)
                if entry is None or entry.notification.status != NotificationStatus.QUEUED:
                    continue
                queued_at = entry.notification.queued_at
                if queued_before is not None and queued_at is not None and queued_at > queued_before:
                    continue
                entry.notification.status = NotificationStatus.PENDING
                entry.notification.queued_at = None
                restored.append(entry.notification)
            if restored:
                queue.reorder()
                await self.repository.save_queue(queue)
                logger.warning(
                    "Queued notifications returned to pending",
                    user_id=user_id,
                    notification_ids=[n.id for n in restored],
                    reason=reason,
                )
        return restored

    async def reclaim_stale_queued(
        self, user_id: str, now: datetime | None = None
    ) -> list[ScheduledNotification]:
        """
        Return notifications queued longer than the pipeline lease to pending.

        Covers hand-offs and crash recoveries that could not be written back.
        A late run for a reclaimed notification skips while it is pending.
        """
        now = as_utc(now or self.ctx.now())
        cutoff = now - timedelta(minutes=self.ctx.config.pipeline.queued_lease_minutes)
        return await self.return_to_pending(
            user_id, None, "queued past the pipeline lease", queued_before=cutoff
        )

    async def get_notification(self, notification_id: str) -> ScheduledNotification | None:
        return await self.repository.get_notification(notification_id)

    async def record_delivery(
        self, notification_id: str, now: datetime | None = None
    ) -> ScheduledNotification | None:
        now = as_utc(now or self.ctx.now())

        async def _apply(queue: NotificationQueue, entry: QueuedNotification) -> None:
            entry.notification.status = NotificationStatus.DELIVERED
            entry.notification.delivered_at = now
            entry.notification.queued_at = None
            entry.notification.last_error = None
            queue.last_processed_at = now
            queue.remove(entry.notification.id)
            logger.info(
                "Notification delivered",
                user_id=queue.user_id,
                notification_id=entry.notification.id,
                attempts=entry.notification.attempts,
            )

        return await self._update(notification_id, _apply)

    async def record_failure(
        self, notification_id: str, error: str, now: datetime | None = None
    ) -> ScheduledNotification | None:
        """
        Apply backoff after a failed attempt.

        ``attempts`` is incremented; below ``max_attempts`` the notification
        goes back to pending at ``now + multiplier^attempts * base delay``,
        otherwise it expires, leaves the queue and releases its cap reservation.
        """
        now = as_utc(now or self.ctx.now())
        base_delay = self.config.retry.base_delay_minutes

        async def _apply(queue: NotificationQueue, entry: QueuedNotification) -> None:
            notification = entry.notification
            notification.attempts += 1
            notification.last_error = error
            notification.queued_at = None
            queue.error_count += 1
            queue.last_processed_at = now

            if notification.attempts < notification.max_attempts:
                delay = notification.backoff_multiplier**notification.attempts * base_delay
                notification.scheduled_for = now + timedelta(minutes=delay)
                notification.status = NotificationStatus.PENDING
                queue.reorder()
                logger.warning(
                    "Notification rescheduled with backoff",
                    user_id=queue.user_id,
                    notification_id=notification.id,
                    attempts=notification.attempts,
                    delay_minutes=round(delay, 2),
                    reason=error,
                )
            else:
                notification.status = NotificationStatus.EXPIRED
                queue.remove(notification.id)
                logger.warning(
                    "Notification expired after max attempts",
                    user_id=queue.user_id,
                    notification_id=notification.id,
                    attempts=notification.attempts,
                    reason=error,
                )

        return await self._update(notification_id, _apply)

    async def reschedule(
        self, notification_id: str, scheduled_for: datetime, reason: str
    ) -> ScheduledNotification | None:
        """Put a notification back to pending at a later time without counting an attempt."""

        async def _apply(queue: NotificationQueue, entry: QueuedNotification) -> None:
            entry.notification.status = NotificationStatus.PENDING
            entry.notification.scheduled_for = as_utc(scheduled_for)
            entry.notification.queued_at = None
            queue.reorder()
            logger.info(
                "Notification deferred",
                user_id=queue.user_id,
                notification_id=notification_id,
                scheduled_for=entry.notification.scheduled_for.isoformat(),
                reason=reason,
            )

        return await self._update(notification_id, _apply)

    async def cancel(self, notification_id: str, reason: str = "cancelled") -> bool:
        """
        Cancel a non-terminal notification.

        Returns:
            True if cancelled, False if unknown or already terminal
        """

        async def _apply(queue: NotificationQueue, entry: QueuedNotification) -> None:
            entry.notification.status = NotificationStatus.CANCELLED
            entry.notification.last_error = reason
            entry.notification.queued_at = None
            queue.remove(entry.notification.id)
            logger.info(
                "Notification cancelled",
                user_id=queue.user_id,
                notification_id=entry.notification.id,
                reason=reason,
            )

        return await self._update(notification_id, _apply) is not None

    async def batch_groups(
        self, user_id: str, now: datetime | None = None
    ) -> dict[str, list[QueuedNotification]]:
        """Ready batchable notifications grouped by batch key; merging is the caller's job."""
        ready = await self.get_ready_for_delivery(user_id, max_count=10_000, now=now)
        groups: dict[str, list[QueuedNotification]] = defaultdict(list)
        for entry in ready:
            if entry.can_be_batched and entry.batch_key:
                groups[entry.batch_key].append(entry)
        return dict(groups)

    async def _update(self, notification_id: str, apply) -> ScheduledNotification | None:
        """
        Load, mutate under the user's lock, and persist one non-terminal notification.

        Cancelled and expired notifications give their cap reservation back;
        the stored sent log is re-read first so other workers' reservations
        survive the rewrite.
        """
        stored = await self.repository.get_notification(notification_id)
        if stored is None:
            logger.info("Notification not found", notification_id=notification_id)
            return None

        user_id = stored.user_id
        async with self.repository.user_lock(user_id):
            queue = await self.repository.get_queue(user_id)
            entry = queue.find(notification_id)
            if entry is None or entry.notification.is_terminal:
                logger.info(
                    "Notification no longer active",
                    user_id=user_id,
                    notification_id=notification_id,
                    status=stored.status.value,
                )
                return None

            await apply(queue, entry)
            await self.repository.save_notification(entry.notification)
            await self.repository.save_queue(queue)

            if entry.notification.status in RELEASING_STATUSES:
                await self._sync_counters(user_id)
                if self.rate_limiter.release(user_id, notification_id):
                    await self._save_sent_log(user_id)
            return entry.notification
