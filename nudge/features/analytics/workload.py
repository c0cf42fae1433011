"""
Workload analyzer - estimates a user's capacity from assigned-item counts and
recent activity, and derives the per-user notification budget.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from nudge.infrastructure.observability.logging import get_logger
from nudge.models.domain.config_domain import WorkloadConfig
from nudge.models.domain.enums import CapacityLevel
from nudge.models.domain.user_domain import UserWorkloadProfile
from nudge.models.domain.work_item import WorkItemSnapshot, as_utc

logger = get_logger(__name__)

ACTIVITY_SCALE = 10.0


class WorkloadAnalyzer:
    def __init__(
        self,
        config: WorkloadConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or WorkloadConfig()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._done = {status.lower() for status in self.config.done_statuses}

    def assess(
        self,
        user_id: str,
        assigned_items: Iterable[WorkItemSnapshot],
        now: datetime | None = None,
    ) -> UserWorkloadProfile:
        """
        Build a workload profile from the user's assigned items.

        Remaining budgets start at the full budget for the capacity level;
        ``apply_usage`` subtracts notifications already counted.
        """
        now = as_utc(now or self._clock())
        active = [item for item in assigned_items if item.status.lower() not in self._done]
        overdue = sum(1 for item in active if item.due_date is not None and as_utc(item.due_date) < now)

        level = self.capacity_for(len(active), overdue)
        budget = self.config.budget_for(level)

        profile = UserWorkloadProfile(
            user_id=user_id,
            active_item_count=len(active),
            overdue_count=overdue,
            recent_activity_score=self._activity_score(active, now),
            capacity_level=level,
            daily_budget=budget.daily,
            weekly_budget=budget.weekly,
            remaining_daily_budget=budget.daily,
            remaining_weekly_budget=budget.weekly,
            computed_at=now,
        )

        logger.debug(
            "Workload assessed",
            user_id=user_id,
            active=profile.active_item_count,
            overdue=overdue,
            capacity=level.value,
        )
        return profile

    def capacity_for(self, active_count: int, overdue_count: int) -> CapacityLevel:
        cutoffs = self.config.cutoffs
        if active_count <= cutoffs.light:
            level = CapacityLevel.LIGHT
        elif active_count <= cutoffs.optimal:
            level = CapacityLevel.MODERATE
        elif active_count <= cutoffs.near_capacity:
            level = CapacityLevel.HEAVY
        else:
            level = CapacityLevel.OVERLOADED

        # Overdue ratio escalates independently of raw count
        ratio = overdue_count / active_count if active_count else 0.0
        if ratio > self.config.overloaded_overdue_ratio:
            return CapacityLevel.OVERLOADED
        if ratio > self.config.heavy_overdue_ratio:
            return max(level, CapacityLevel.HEAVY)
        return level

    @staticmethod
    def apply_usage(profile: UserWorkloadProfile, used_today: int, used_this_week: int) -> UserWorkloadProfile:
        """Return a copy with remaining budgets reduced by notifications already counted."""
        return profile.model_copy(
            update={
                "remaining_daily_budget": max(0, profile.daily_budget - used_today),
                "remaining_weekly_budget": max(0, profile.weekly_budget - used_this_week),
            }
        )

    def _activity_score(self, items: list[WorkItemSnapshot], now: datetime) -> float:
        if not items:
            return 0.0
        cutoff = now - timedelta(days=self.config.activity_window_days)
        recent = sum(1 for item in items if item.updated is not None and as_utc(item.updated) >= cutoff)
        return round(recent / len(items) * ACTIVITY_SCALE, 2)
