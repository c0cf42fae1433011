"""
Deadline analyzer - scores proximity to a due date or service-level deadline,
independent of staleness.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from nudge.errors import AnalysisError
from nudge.infrastructure.observability.logging import get_logger
from nudge.models.domain.analysis_domain import BatchAssessment, DeadlineAssessment
from nudge.models.domain.config_domain import DeadlineConfig, SlaTarget
from nudge.models.domain.enums import UrgencyLevel
from nudge.models.domain.work_item import WorkItemSnapshot, as_utc
from nudge.utils.business_calendar import add_business_hours, business_days_between

logger = get_logger(__name__)


@dataclass(slots=True)
class AttentionBuckets:
    critical: list[WorkItemSnapshot] = field(default_factory=list)
    high: list[WorkItemSnapshot] = field(default_factory=list)
    medium: list[WorkItemSnapshot] = field(default_factory=list)
    upcoming: list[WorkItemSnapshot] = field(default_factory=list)

    def total(self) -> int:
        return len(self.critical) + len(self.high) + len(self.medium) + len(self.upcoming)


class DeadlineAnalyzer:
    def __init__(
        self,
        config: DeadlineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or DeadlineConfig()
        self._clock = clock or (lambda: datetime.now(UTC))

    def assess(self, item: WorkItemSnapshot, now: datetime | None = None) -> DeadlineAssessment:
        """
        Score deadline proximity for one item.

        The effective deadline is the earlier of the item's due date and the
        most restrictive applicable service-level target. Items with neither
        come back as ``has_deadline=False`` with low urgency.
        """
        now = as_utc(now or self._clock())
        deadline, source = self._effective_deadline(item)

        if deadline is None:
            return DeadlineAssessment(has_deadline=False, urgency_level=UrgencyLevel.LOW)

        days_remaining = self._days_remaining(now, deadline)
        is_overdue = deadline < now

        return DeadlineAssessment(
            has_deadline=True,
            days_remaining=days_remaining,
            urgency_level=self._urgency_for(days_remaining, is_overdue, now, deadline),
            is_overdue=is_overdue,
            deadline=deadline,
            deadline_source=source,
        )

    def batch_assess(
        self, items: Iterable[WorkItemSnapshot], now: datetime | None = None
    ) -> BatchAssessment[DeadlineAssessment]:
        now = now or self._clock()
        batch: BatchAssessment[DeadlineAssessment] = BatchAssessment()
        for item in items:
            try:
                batch.results[item.id] = self.assess(item, now)
            except AnalysisError as e:
                logger.warning("Skipping item in deadline batch", item_id=item.id, error=e.message)
                batch.failures[item.id] = e
        return batch

    def find_items_needing_attention(
        self, items: Iterable[WorkItemSnapshot], now: datetime | None = None
    ) -> AttentionBuckets:
        """Bucket items by urgency; low-urgency items inside the ``low`` window are upcoming."""
        items = list(items)
        buckets = AttentionBuckets()
        batch = self.batch_assess(items, now)

        for item in items:
            assessment = batch.results.get(item.id)
            if assessment is None or not assessment.has_deadline:
                continue
            if assessment.urgency_level == UrgencyLevel.CRITICAL:
                buckets.critical.append(item)
            elif assessment.urgency_level == UrgencyLevel.HIGH:
                buckets.high.append(item)
            elif assessment.urgency_level == UrgencyLevel.MEDIUM:
                buckets.medium.append(item)
            elif assessment.days_remaining <= self.config.thresholds.low:
                buckets.upcoming.append(item)

        return buckets

    def _effective_deadline(self, item: WorkItemSnapshot) -> tuple[datetime | None, str | None]:
        candidates: list[tuple[datetime, str]] = []
        if item.due_date is not None:
            candidates.append((as_utc(item.due_date), "due_date"))

        sla = self._most_restrictive_sla(item)
        if sla is not None:
            if item.created is None:
                raise AnalysisError(
                    "Service-level target needs a created timestamp", item_id=item.id, field="created"
                )
            candidates.append((self._sla_deadline(as_utc(item.created), sla), sla.name))

        if not candidates:
            return None, None
        return min(candidates, key=lambda c: c[0])

    def _most_restrictive_sla(self, item: WorkItemSnapshot) -> SlaTarget | None:
        applicable = [
            sla for sla in self.config.sla_targets if sla.applies_to(item.priority, item.item_type)
        ]
        if not applicable:
            return None
        return min(applicable, key=lambda sla: sla.time_limit_hours)

    def _sla_deadline(self, created: datetime, sla: SlaTarget) -> datetime:
        if sla.business_hours_only:
            return add_business_hours(created, sla.time_limit_hours, self.config.holidays)
        return created + timedelta(hours=sla.time_limit_hours)

    def _days_remaining(self, now: datetime, deadline: datetime) -> float:
        if self.config.business_days_only:
            return float(business_days_between(now.date(), deadline.date(), self.config.holidays))
        return round((deadline - now).total_seconds() / 86400, 4)

    def _urgency_for(
        self, days_remaining: float, is_overdue: bool, now: datetime, deadline: datetime
    ) -> UrgencyLevel:
        if is_overdue:
            if self.config.business_days_only:
                # Weekends and holidays do not eat into the grace period
                overdue_days = -days_remaining
            else:
                overdue_days = (now - deadline).total_seconds() / 86400
            if overdue_days > self.config.overdue_grace_days:
                return UrgencyLevel.CRITICAL
            return UrgencyLevel.HIGH

        for level, threshold in self.config.thresholds.ordered():
            if days_remaining <= threshold:
                return level
        return UrgencyLevel.LOW
