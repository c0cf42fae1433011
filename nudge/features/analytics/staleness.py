"""
Staleness analyzer - scores how long a work item has gone without meaningful
activity, adjusted for item type, priority and activity context.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime

from nudge.errors import AnalysisError
from nudge.infrastructure.observability.logging import get_logger
from nudge.models.domain.analysis_domain import (
    ActivityContext,
    BatchAssessment,
    StalenessAssessment,
)
from nudge.models.domain.config_domain import StalenessConfig
from nudge.models.domain.enums import StalenessLevel
from nudge.models.domain.work_item import WorkItemSnapshot, as_utc

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400
MAX_ACTIVITY_ADJUSTMENT = 5.0
BASE_CONFIDENCE = 0.5
ESTABLISHED_ITEM_DAYS = 30


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days from ``earlier`` to ``later``, rounded up; never negative."""
    seconds = (as_utc(later) - as_utc(earlier)).total_seconds()
    return math.ceil(max(0.0, seconds) / SECONDS_PER_DAY)


class StalenessAnalyzer:
    # Activity adjustments in days (negative extends freshness)
    RECENT_COMMENT_ADJUSTMENT = -2.0
    RECENT_WORKLOG_ADJUSTMENT = -3.0
    RECENT_STATUS_CHANGE_ADJUSTMENT = -1.0
    HIGH_ASSIGNEE_ACTIVITY_ADJUSTMENT = -1.0
    LOW_PROJECT_ACTIVITY_ADJUSTMENT = 1.0

    def __init__(
        self,
        config: StalenessConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or StalenessConfig()
        self._clock = clock or (lambda: datetime.now(UTC))

    def assess(
        self,
        item: WorkItemSnapshot,
        activity: ActivityContext | None = None,
        now: datetime | None = None,
    ) -> StalenessAssessment:
        """
        Score one work item.

        Args:
            item: Work item snapshot; created and updated timestamps are required
            activity: Assignee/project activity; defaults to a zero-activity context
            now: Evaluation time (defaults to the analyzer clock)

        Raises:
            AnalysisError: If a required timestamp is missing
        """
        if item.created is None:
            raise AnalysisError("Work item has no created timestamp", item_id=item.id, field="created")
        if item.updated is None:
            raise AnalysisError("Work item has no updated timestamp", item_id=item.id, field="updated")

        activity = activity or ActivityContext()
        now = as_utc(now or self._clock())

        days_since_update = days_between(item.updated, now)
        days_since_creation = days_between(item.created, now)

        type_multiplier = self._multiplier(self.config.type_multipliers, item.item_type, "item_type", item.id)
        priority_multiplier = self._multiplier(
            self.config.priority_multipliers, item.priority, "priority", item.id
        )

        adjustment = self._activity_adjustment(item, activity)
        adjusted_days = days_since_update / (type_multiplier * priority_multiplier) + adjustment

        return StalenessAssessment(
            days_since_update=days_since_update,
            days_since_creation=days_since_creation,
            adjusted_days=round(adjusted_days, 4),
            activity_adjustment=adjustment,
            level=self._level_for(adjusted_days),
            confidence=self._confidence(item, activity, days_since_creation, now),
        )

    def batch_assess(
        self,
        items: Iterable[WorkItemSnapshot],
        activity: Mapping[str, ActivityContext] | None = None,
        now: datetime | None = None,
    ) -> BatchAssessment[StalenessAssessment]:
        """Assess many items; malformed items land in ``failures`` instead of aborting."""
        activity = activity or {}
        now = now or self._clock()
        batch: BatchAssessment[StalenessAssessment] = BatchAssessment()

        for item in items:
            try:
                batch.results[item.id] = self.assess(item, activity.get(item.id), now)
            except AnalysisError as e:
                logger.warning(
                    "Skipping item in staleness batch",
                    item_id=item.id,
                    field=e.field,
                    error=e.message,
                )
                batch.failures[item.id] = e

        return batch

    def _level_for(self, adjusted_days: float) -> StalenessLevel:
        # First threshold the value is <= wins
        for level, threshold in self.config.thresholds.ordered():
            if adjusted_days <= threshold:
                return level
        return StalenessLevel.ABANDONED

    @staticmethod
    def _multiplier(table: Mapping[str, float], key: str, kind: str, item_id: str) -> float:
        value = table.get(key)
        if value is None or value <= 0:
            logger.info("Unknown multiplier key, using 1.0", kind=kind, key=key, item_id=item_id)
            return 1.0
        return value

    def _activity_adjustment(self, item: WorkItemSnapshot, activity: ActivityContext) -> float:
        adjustment = 0.0
        if item.has_recent_comment:
            adjustment += self.RECENT_COMMENT_ADJUSTMENT
        if item.has_recent_worklog:
            adjustment += self.RECENT_WORKLOG_ADJUSTMENT
        if item.has_recent_status_change:
            adjustment += self.RECENT_STATUS_CHANGE_ADJUSTMENT
        if activity.assignee_activity_score > self.config.high_assignee_activity:
            adjustment += self.HIGH_ASSIGNEE_ACTIVITY_ADJUSTMENT
        if activity.project_activity_score < self.config.low_project_activity:
            adjustment += self.LOW_PROJECT_ACTIVITY_ADJUSTMENT
        return max(-MAX_ACTIVITY_ADJUSTMENT, min(MAX_ACTIVITY_ADJUSTMENT, adjustment))

    def _confidence(
        self,
        item: WorkItemSnapshot,
        activity: ActivityContext,
        days_since_creation: int,
        now: datetime,
    ) -> float:
        confidence = BASE_CONFIDENCE
        if item.has_recent_activity:
            confidence += 0.2
        if days_since_creation > ESTABLISHED_ITEM_DAYS:
            confidence += 0.1
        if activity.assignee_activity_score > self.config.clear_assignee_activity:
            confidence += 0.2
        if self._in_holiday_period(now):
            confidence -= 0.1
        return round(max(0.1, min(1.0, confidence)), 4)

    def _in_holiday_period(self, now: datetime) -> bool:
        today = now.date()
        return any(period.contains(today) for period in self.config.holiday_periods)
