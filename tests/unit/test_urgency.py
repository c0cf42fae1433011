from datetime import timedelta

import pytest

from nudge.features.analytics.urgency import combine, derive_priority
from nudge.models.domain.analysis_domain import (
    DeadlineAssessment,
    StalenessAssessment,
    UrgencyAssessment,
)
from nudge.models.domain.config_domain import UrgencyWeights
from nudge.models.domain.enums import Priority, StalenessLevel, UrgencyLevel


def _staleness(level: StalenessLevel) -> StalenessAssessment:
    return StalenessAssessment(
        days_since_update=10,
        days_since_creation=40,
        adjusted_days=10.0,
        activity_adjustment=0.0,
        level=level,
        confidence=0.6,
    )


def _urgency(clock, level=StalenessLevel.FRESH, days_remaining=None, is_overdue=False):
    return UrgencyAssessment(
        item_id="PROJ-1",
        analyzed_at=clock.now,
        staleness_level=level,
        staleness_confidence=0.6,
        deadline_urgency=UrgencyLevel.LOW,
        days_remaining=days_remaining,
        is_overdue=is_overdue,
        combined_score=0.0,
    )


def test_combine_weights_each_signal(make_item, clock):
    urgency = combine(
        make_item(),
        _staleness(StalenessLevel.STALE),
        DeadlineAssessment(has_deadline=False),
        clock.now,
    )

    # 0.4 * 0.5 (stale) + 0.45 * 0 (no deadline) + 0.15 * 0.5 (Medium)
    assert urgency.combined_score == pytest.approx(0.275)
    assert urgency.staleness_level == StalenessLevel.STALE
    assert urgency.analyzed_at == clock.now


def test_combine_saturates_at_one(make_item, clock):
    deadline = DeadlineAssessment(
        has_deadline=True,
        days_remaining=-3,
        urgency_level=UrgencyLevel.CRITICAL,
        is_overdue=True,
        deadline=clock.now - timedelta(days=3),
    )

    urgency = combine(make_item(priority="Blocker"), _staleness(StalenessLevel.ABANDONED), deadline, clock.now)

    assert urgency.combined_score == pytest.approx(1.0)
    assert urgency.is_overdue is True


def test_combine_with_zero_weights_scores_zero(make_item, clock):
    weights = UrgencyWeights(staleness=0, deadline=0, context=0)

    urgency = combine(
        make_item(), _staleness(StalenessLevel.ABANDONED), DeadlineAssessment(has_deadline=False), clock.now, weights
    )

    assert urgency.combined_score == 0.0


@pytest.mark.parametrize(
    "kwargs, expected",
    [
        ({"is_overdue": True, "days_remaining": -1}, Priority.URGENT),
        ({"days_remaining": 0.5}, Priority.HIGH),
        ({"days_remaining": 2}, Priority.MEDIUM),
        ({"days_remaining": 10, "level": StalenessLevel.VERY_STALE}, Priority.HIGH),
        ({"level": StalenessLevel.ABANDONED}, Priority.HIGH),
        ({"level": StalenessLevel.STALE}, Priority.MEDIUM),
        ({"level": StalenessLevel.AGING}, Priority.LOW),
        ({}, Priority.LOW),
    ],
)
def test_derive_priority(clock, kwargs, expected):
    assert derive_priority(_urgency(clock, **kwargs)) == expected
