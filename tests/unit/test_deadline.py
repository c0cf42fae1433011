from datetime import UTC, datetime, timedelta

import pytest

from nudge.features.analytics.deadline import DeadlineAnalyzer
from nudge.models.domain.config_domain import DeadlineConfig, EngineConfig, SlaTarget
from nudge.models.domain.enums import UrgencyLevel


@pytest.fixture
def analyzer(clock):
    return DeadlineAnalyzer(DeadlineConfig(), clock=clock)


def test_no_deadline_is_low_urgency(analyzer, make_item):
    assessment = analyzer.assess(make_item(due_date=None))

    assert assessment.has_deadline is False
    assert assessment.urgency_level == UrgencyLevel.LOW
    assert assessment.days_remaining is None


def test_overdue_past_grace_is_critical(analyzer, make_item, clock):
    assessment = analyzer.assess(make_item(due_date=clock.now - timedelta(days=2)))

    assert assessment.is_overdue is True
    assert assessment.urgency_level == UrgencyLevel.CRITICAL
    assert assessment.days_remaining == pytest.approx(-2)


def test_overdue_within_grace_is_high(analyzer, make_item, clock):
    assessment = analyzer.assess(make_item(due_date=clock.now - timedelta(hours=12)))

    assert assessment.is_overdue is True
    assert assessment.urgency_level == UrgencyLevel.HIGH


@pytest.mark.parametrize(
    "days_ahead, expected",
    [
        (0.5, UrgencyLevel.CRITICAL),
        (1, UrgencyLevel.CRITICAL),
        (2, UrgencyLevel.HIGH),
        (5, UrgencyLevel.MEDIUM),
        (10, UrgencyLevel.LOW),
    ],
)
def test_days_remaining_maps_to_urgency(analyzer, make_item, clock, days_ahead, expected):
    assessment = analyzer.assess(make_item(due_date=clock.now + timedelta(days=days_ahead)))

    assert assessment.urgency_level == expected
    assert assessment.is_overdue is False


def test_support_profile_uses_tighter_windows(make_item, clock):
    analyzer = DeadlineAnalyzer(EngineConfig.for_profile("support").deadline, clock=clock)

    assessment = analyzer.assess(make_item(due_date=clock.now + timedelta(days=2)))

    assert assessment.urgency_level == UrgencyLevel.MEDIUM


def test_service_level_target_wins_when_earlier(make_item, clock):
    config = DeadlineConfig(
        sla_targets=[
            SlaTarget(name="high-priority-response", time_limit_hours=12, priorities=["High"]),
            SlaTarget(name="standard-response", time_limit_hours=72),
        ]
    )
    analyzer = DeadlineAnalyzer(config, clock=clock)
    item = make_item(
        priority="High",
        created=clock.now - timedelta(days=2),
        due_date=clock.now + timedelta(days=10),
    )

    assessment = analyzer.assess(item)

    assert assessment.deadline_source == "high-priority-response"
    assert assessment.is_overdue is True
    assert assessment.urgency_level == UrgencyLevel.CRITICAL


def test_service_level_target_filters_by_priority(make_item, clock):
    config = DeadlineConfig(
        sla_targets=[SlaTarget(name="blocker-response", time_limit_hours=4, priorities=["Blocker"])]
    )
    analyzer = DeadlineAnalyzer(config, clock=clock)

    assessment = analyzer.assess(make_item(due_date=clock.now + timedelta(days=5)))

    assert assessment.deadline_source == "due_date"
    assert assessment.urgency_level == UrgencyLevel.MEDIUM


def test_business_hours_target_skips_nights(make_item, clock):
    config = DeadlineConfig(
        sla_targets=[SlaTarget(name="support", time_limit_hours=4, business_hours_only=True)]
    )
    analyzer = DeadlineAnalyzer(config, clock=clock)
    # Monday 16:00: one hour on Monday, three on Tuesday morning
    item = make_item(created=datetime(2024, 3, 4, 16, 0, tzinfo=UTC), due_date=None)

    assessment = analyzer.assess(item)

    assert assessment.deadline == datetime(2024, 3, 5, 12, 0, tzinfo=UTC)
    assert assessment.urgency_level == UrgencyLevel.HIGH


def test_business_day_counting_skips_weekend(make_item, clock):
    # Wednesday -> next Monday: Thu, Fri, Mon
    due = datetime(2024, 3, 11, 10, 0, tzinfo=UTC)
    calendar_days = DeadlineAnalyzer(DeadlineConfig(), clock=clock).assess(make_item(due_date=due))
    business_days = DeadlineAnalyzer(DeadlineConfig(business_days_only=True), clock=clock).assess(
        make_item(due_date=due)
    )

    assert calendar_days.days_remaining == pytest.approx(5)
    assert calendar_days.urgency_level == UrgencyLevel.MEDIUM
    assert business_days.days_remaining == 3
    assert business_days.urgency_level == UrgencyLevel.HIGH


def test_business_day_counting_skips_holidays(make_item, clock):
    config = DeadlineConfig(business_days_only=True, holidays=[datetime(2024, 3, 7).date()])
    analyzer = DeadlineAnalyzer(config, clock=clock)

    assessment = analyzer.assess(make_item(due_date=datetime(2024, 3, 11, 10, 0, tzinfo=UTC)))

    assert assessment.days_remaining == 2


def test_find_items_needing_attention_buckets(analyzer, make_item, clock):
    items = [
        make_item("OVERDUE", due_date=clock.now - timedelta(days=3)),
        make_item("SOON", due_date=clock.now + timedelta(days=2)),
        make_item("WEEK", due_date=clock.now + timedelta(days=6)),
        make_item("LATER", due_date=clock.now + timedelta(days=12)),
        make_item("FAR", due_date=clock.now + timedelta(days=40)),
        make_item("NONE", due_date=None),
    ]

    buckets = analyzer.find_items_needing_attention(items)

    assert [i.id for i in buckets.critical] == ["OVERDUE"]
    assert [i.id for i in buckets.high] == ["SOON"]
    assert [i.id for i in buckets.medium] == ["WEEK"]
    assert [i.id for i in buckets.upcoming] == ["LATER"]
    assert buckets.total() == 4


def test_batch_reports_items_missing_created_for_targets(make_item, clock):
    config = DeadlineConfig(sla_targets=[SlaTarget(name="all", time_limit_hours=48)])
    analyzer = DeadlineAnalyzer(config, clock=clock)

    batch = analyzer.batch_assess([make_item("OK"), make_item("BROKEN", created=None)])

    assert set(batch.results) == {"OK"}
    assert set(batch.failures) == {"BROKEN"}


def test_business_day_grace_ignores_the_weekend(make_item, clock):
    analyzer = DeadlineAnalyzer(DeadlineConfig(business_days_only=True), clock=clock)
    due = datetime(2024, 3, 1, 17, 0, tzinfo=UTC)

    clock.set(datetime(2024, 3, 4, 10, 0, tzinfo=UTC))
    monday = analyzer.assess(make_item(due_date=due))
    clock.set(datetime(2024, 3, 5, 10, 0, tzinfo=UTC))
    tuesday = analyzer.assess(make_item(due_date=due))

    assert monday.is_overdue is True
    assert monday.days_remaining == -1
    assert monday.urgency_level == UrgencyLevel.HIGH
    assert tuesday.urgency_level == UrgencyLevel.CRITICAL
