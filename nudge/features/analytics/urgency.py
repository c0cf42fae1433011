"""
Combines staleness and deadline assessments into the urgency snapshot that
drives scheduling priority.
"""

from __future__ import annotations

from datetime import datetime

from nudge.models.domain.analysis_domain import (
    DeadlineAssessment,
    StalenessAssessment,
    UrgencyAssessment,
)
from nudge.models.domain.config_domain import UrgencyWeights
from nudge.models.domain.enums import Priority, StalenessLevel, UrgencyLevel
from nudge.models.domain.work_item import WorkItemSnapshot

# Business-context weight from the tracker's own priority field
CONTEXT_WEIGHTS = {
    "Blocker": 1.0,
    "Critical": 0.9,
    "Highest": 0.9,
    "High": 0.7,
    "Medium": 0.5,
    "Low": 0.3,
    "Lowest": 0.1,
}
DEFAULT_CONTEXT_WEIGHT = 0.5


def combine(
    item: WorkItemSnapshot,
    staleness: StalenessAssessment,
    deadline: DeadlineAssessment,
    analyzed_at: datetime,
    weights: UrgencyWeights | None = None,
) -> UrgencyAssessment:
    weights = weights or UrgencyWeights()
    total = weights.staleness + weights.deadline + weights.context
    staleness_part = staleness.level.rank / StalenessLevel.max_rank()
    deadline_part = deadline.urgency_level.rank / UrgencyLevel.max_rank()
    context_part = CONTEXT_WEIGHTS.get(item.priority, DEFAULT_CONTEXT_WEIGHT)

    score = 0.0
    if total > 0:
        score = (
            weights.staleness * staleness_part
            + weights.deadline * deadline_part
            + weights.context * context_part
        ) / total

    return UrgencyAssessment(
        item_id=item.id,
        analyzed_at=analyzed_at,
        staleness_level=staleness.level,
        staleness_confidence=staleness.confidence,
        deadline_urgency=deadline.urgency_level,
        days_remaining=deadline.days_remaining,
        is_overdue=deadline.is_overdue,
        combined_score=round(min(1.0, max(0.0, score)), 4),
    )


def derive_priority(urgency: UrgencyAssessment) -> Priority:
    """Deadline signals win over staleness; absent both the reminder is low priority."""
    if urgency.is_overdue:
        return Priority.URGENT
    if urgency.days_remaining is not None:
        if urgency.days_remaining <= 1:
            return Priority.HIGH
        if urgency.days_remaining <= 3:
            return Priority.MEDIUM

    if urgency.staleness_level >= StalenessLevel.VERY_STALE:
        return Priority.HIGH
    if urgency.staleness_level == StalenessLevel.STALE:
        return Priority.MEDIUM
    return Priority.LOW
