"""
Component configuration for the analyzers, the scheduling engine and the
pipeline.

Every model carries working defaults so ``EngineConfig()`` is usable as-is.
Named profiles tune the thresholds for teams with tighter or looser cadences.
Call ``EngineConfig.validate_config()`` before handing a config to the engine.
"""

from datetime import date

from pydantic import BaseModel, Field

from nudge.errors import SchedulingError
from nudge.models.domain.enums import (
    CapacityLevel,
    NotificationType,
    Priority,
    QuietHoursPolicy,
    StalenessLevel,
    UrgencyLevel,
)
from nudge.utils.business_calendar import parse_clock

WEEKDAYS = [0, 1, 2, 3, 4]


# =================================================================
# ANALYZERS
# =================================================================


class StalenessThresholds(BaseModel):
    fresh: float = 2
    aging: float = 5
    stale: float = 10
    very_stale: float = 20
    abandoned: float = 45

    def ordered(self) -> list[tuple[StalenessLevel, float]]:
        return [
            (StalenessLevel.FRESH, self.fresh),
            (StalenessLevel.AGING, self.aging),
            (StalenessLevel.STALE, self.stale),
            (StalenessLevel.VERY_STALE, self.very_stale),
            (StalenessLevel.ABANDONED, self.abandoned),
        ]


class HolidayPeriod(BaseModel):
    start: date
    end: date
    name: str = ""

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


class StalenessConfig(BaseModel):
    thresholds: StalenessThresholds = Field(default_factory=StalenessThresholds)
    type_multipliers: dict[str, float] = Field(
        default_factory=lambda: {
            "Epic": 1.5,
            "Story": 1.0,
            "Task": 1.0,
            "Bug": 0.7,
            "Sub-task": 0.8,
            "Spike": 1.2,
        }
    )
    priority_multipliers: dict[str, float] = Field(
        default_factory=lambda: {
            "Blocker": 0.3,
            "Critical": 0.5,
            "High": 0.8,
            "Medium": 1.0,
            "Low": 1.3,
            "Lowest": 1.5,
        }
    )
    holiday_periods: list[HolidayPeriod] = Field(default_factory=list)
    # Activity score cutoffs in [0, 1]
    clear_assignee_activity: float = 0.1
    high_assignee_activity: float = 0.7
    low_project_activity: float = 0.3


class SlaTarget(BaseModel):
    """A service-level response target; empty filter lists match every item."""

    name: str
    time_limit_hours: float = Field(gt=0)
    priorities: list[str] = Field(default_factory=list)
    item_types: list[str] = Field(default_factory=list)
    business_hours_only: bool = False

    def applies_to(self, priority: str, item_type: str) -> bool:
        if self.priorities and priority not in self.priorities:
            return False
        if self.item_types and item_type not in self.item_types:
            return False
        return True


class DeadlineThresholds(BaseModel):
    critical: float = 1
    high: float = 3
    medium: float = 7
    low: float = 14

    def ordered(self) -> list[tuple[UrgencyLevel, float]]:
        return [
            (UrgencyLevel.CRITICAL, self.critical),
            (UrgencyLevel.HIGH, self.high),
            (UrgencyLevel.MEDIUM, self.medium),
        ]


class DeadlineConfig(BaseModel):
    thresholds: DeadlineThresholds = Field(default_factory=DeadlineThresholds)
    overdue_grace_days: float = 1
    business_days_only: bool = False
    holidays: list[date] = Field(default_factory=list)
    sla_targets: list[SlaTarget] = Field(default_factory=list)


class CapacityCutoffs(BaseModel):
    light: int = 4
    optimal: int = 8
    near_capacity: int = 12


class NotificationBudget(BaseModel):
    daily: int = Field(ge=0)
    weekly: int = Field(ge=0)


def _default_budgets() -> dict[CapacityLevel, NotificationBudget]:
    return {
        CapacityLevel.LIGHT: NotificationBudget(daily=4, weekly=20),
        CapacityLevel.MODERATE: NotificationBudget(daily=3, weekly=15),
        CapacityLevel.HEAVY: NotificationBudget(daily=2, weekly=10),
        CapacityLevel.OVERLOADED: NotificationBudget(daily=1, weekly=5),
    }


class WorkloadConfig(BaseModel):
    cutoffs: CapacityCutoffs = Field(default_factory=CapacityCutoffs)
    heavy_overdue_ratio: float = 0.3
    overloaded_overdue_ratio: float = 0.6
    activity_window_days: int = 7
    done_statuses: list[str] = Field(default_factory=lambda: ["Done", "Closed", "Resolved"])
    budgets: dict[CapacityLevel, NotificationBudget] = Field(default_factory=_default_budgets)

    def budget_for(self, level: CapacityLevel) -> NotificationBudget:
        return self.budgets.get(level) or _default_budgets()[level]


class UrgencyWeights(BaseModel):
    """Blend used for the combined urgency score; tunable, not a fixed constant."""

    staleness: float = 0.4
    deadline: float = 0.45
    context: float = 0.15


# =================================================================
# SCHEDULING
# =================================================================


class TimeWindow(BaseModel):
    """Clock window on the given weekdays (Monday = 0) with a preference weight in [0, 1]."""

    start: str
    end: str
    days: list[int] = Field(default_factory=lambda: list(WEEKDAYS))
    weight: float = 1.0
    label: str | None = None


class TypeScheduleConfig(BaseModel):
    min_interval_minutes: int = Field(ge=0)
    max_interval_minutes: int = Field(ge=0)
    optimal_windows: list[TimeWindow] = Field(default_factory=list)
    avoid_windows: list[TimeWindow] = Field(default_factory=list)
    backoff_multiplier: float = 1.5
    max_daily_count: int = 3
    can_be_batched: bool = False


def _default_type_schedules() -> dict[NotificationType, TypeScheduleConfig]:
    return {
        NotificationType.STALE_REMINDER: TypeScheduleConfig(
            min_interval_minutes=480,
            max_interval_minutes=1440,
            optimal_windows=[
                TimeWindow(start="09:00", end="11:00", weight=0.9),
                TimeWindow(start="14:00", end="16:00", weight=0.8),
            ],
            avoid_windows=[TimeWindow(start="12:00", end="13:00", weight=0.1)],
            backoff_multiplier=1.5,
            max_daily_count=3,
        ),
        NotificationType.DEADLINE_WARNING: TypeScheduleConfig(
            min_interval_minutes=60,
            max_interval_minutes=480,
            optimal_windows=[TimeWindow(start="08:00", end="10:00", weight=1.0)],
            backoff_multiplier=1.2,
            max_daily_count=5,
        ),
        NotificationType.PROGRESS_UPDATE: TypeScheduleConfig(
            min_interval_minutes=720,
            max_interval_minutes=2160,
            optimal_windows=[TimeWindow(start="16:00", end="17:00", days=[4], weight=0.9)],
            backoff_multiplier=2.0,
            max_daily_count=1,
            can_be_batched=True,
        ),
        NotificationType.TEAM_ENCOURAGEMENT: TypeScheduleConfig(
            min_interval_minutes=1440,
            max_interval_minutes=4320,
            optimal_windows=[TimeWindow(start="10:00", end="11:00", days=[0], weight=1.0)],
            backoff_multiplier=3.0,
            max_daily_count=1,
            can_be_batched=True,
        ),
        NotificationType.ACHIEVEMENT_RECOGNITION: TypeScheduleConfig(
            min_interval_minutes=0,
            max_interval_minutes=60,
            optimal_windows=[TimeWindow(start="09:00", end="17:00", weight=1.0)],
            backoff_multiplier=1.0,
            max_daily_count=3,
        ),
    }


class GlobalLimits(BaseModel):
    max_per_hour: int = 3
    max_per_day: int = 8
    respect_quiet_hours: bool = True
    respect_weekends: bool = True
    respect_holidays: bool = True
    quiet_hours_policy: QuietHoursPolicy = QuietHoursPolicy.VETO


class RetryConfig(BaseModel):
    base_delay_minutes: float = 30
    max_attempts: int = 3


class AdaptiveConfig(BaseModel):
    enabled: bool = True
    minimum_data_points: int = 10
    history_limit: int = 200
    learned_window_weight: float = 0.85


class SchedulingConfig(BaseModel):
    type_schedules: dict[NotificationType, TypeScheduleConfig] = Field(
        default_factory=_default_type_schedules
    )
    priority_multipliers: dict[Priority, float] = Field(
        default_factory=lambda: {
            Priority.URGENT: 0.5,
            Priority.HIGH: 1.0,
            Priority.MEDIUM: 1.5,
            Priority.LOW: 2.0,
        }
    )
    priority_weights: dict[Priority, int] = Field(
        default_factory=lambda: {
            Priority.URGENT: 100,
            Priority.HIGH: 75,
            Priority.MEDIUM: 50,
            Priority.LOW: 25,
        }
    )
    type_weights: dict[NotificationType, int] = Field(
        default_factory=lambda: {
            NotificationType.DEADLINE_WARNING: 20,
            NotificationType.ACHIEVEMENT_RECOGNITION: 15,
            NotificationType.STALE_REMINDER: 10,
            NotificationType.PROGRESS_UPDATE: 5,
            NotificationType.TEAM_ENCOURAGEMENT: 5,
        }
    )
    global_limits: GlobalLimits = Field(default_factory=GlobalLimits)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    adaptive: AdaptiveConfig = Field(default_factory=AdaptiveConfig)
    holidays: list[date] = Field(default_factory=list)
    alternative_offsets_hours: list[float] = Field(default_factory=lambda: [2, 4, 6])

    def for_type(self, notification_type: NotificationType) -> TypeScheduleConfig:
        config = self.type_schedules.get(notification_type)
        if config is None:
            config = _default_type_schedules()[notification_type]
        return config

    def composite_priority(self, priority: Priority, notification_type: NotificationType) -> int:
        return self.priority_weights.get(priority, 0) + self.type_weights.get(notification_type, 0)


# =================================================================
# PIPELINE
# =================================================================


class PipelineConfig(BaseModel):
    stage_timeout_seconds: float = 30
    max_pipelines_per_tick: int = 25
    min_content_score: float = 0.6
    # When set, content still unacceptable after one repair fails the run
    block_on_invalid_content: bool = False
    max_ready_per_user: int = 10
    # QUEUED longer than this without a finished run goes back to PENDING
    queued_lease_minutes: float = 30


class EngineConfig(BaseModel):
    profile: str = "default"
    staleness: StalenessConfig = Field(default_factory=StalenessConfig)
    deadline: DeadlineConfig = Field(default_factory=DeadlineConfig)
    workload: WorkloadConfig = Field(default_factory=WorkloadConfig)
    urgency_weights: UrgencyWeights = Field(default_factory=UrgencyWeights)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    @classmethod
    def for_profile(cls, profile: str) -> "EngineConfig":
        """Build a config for a named team profile; unknown names raise SchedulingError."""
        config = cls(profile=profile)
        if profile == "default":
            return config
        if profile == "development":
            config.staleness.thresholds = StalenessThresholds(
                fresh=1, aging=3, stale=7, very_stale=14, abandoned=30
            )
        elif profile == "research":
            config.staleness.thresholds = StalenessThresholds(
                fresh=5, aging=10, stale=20, very_stale=40, abandoned=60
            )
        elif profile == "support":
            config.deadline.thresholds = DeadlineThresholds(critical=0.5, high=1, medium=2, low=5)
        else:
            raise SchedulingError(f"Unknown configuration profile: {profile}")
        return config

    def validate_config(self) -> "EngineConfig":
        """Check for conflicting settings and raise one SchedulingError listing all of them."""
        errors: list[str] = []

        staleness = [value for _, value in self.staleness.thresholds.ordered()]
        if not _strictly_ascending(staleness):
            errors.append(f"staleness thresholds must be strictly ascending: {staleness}")

        deadline = self.deadline.thresholds
        deadline_values = [deadline.critical, deadline.high, deadline.medium, deadline.low]
        if not _strictly_ascending(deadline_values):
            errors.append(f"deadline thresholds must be strictly ascending: {deadline_values}")
        if self.deadline.overdue_grace_days < 0:
            errors.append("overdue grace period cannot be negative")

        cutoffs = self.workload.cutoffs
        cutoff_values = [cutoffs.light, cutoffs.optimal, cutoffs.near_capacity]
        if not _strictly_ascending(cutoff_values):
            errors.append(f"capacity cutoffs must be strictly ascending: {cutoff_values}")
        if not 0 <= self.workload.heavy_overdue_ratio <= self.workload.overloaded_overdue_ratio <= 1:
            errors.append("overdue ratios must satisfy 0 <= heavy <= overloaded <= 1")

        limits = self.scheduling.global_limits
        if limits.max_per_hour <= 0 or limits.max_per_day <= 0:
            errors.append("global hourly and daily caps must be positive")
        if limits.max_per_hour > limits.max_per_day:
            errors.append("hourly cap cannot exceed daily cap")
        if self.scheduling.retry.max_attempts < 1:
            errors.append("max_attempts must be at least 1")
        if self.scheduling.retry.base_delay_minutes <= 0:
            errors.append("retry base delay must be positive")
        if self.pipeline.queued_lease_minutes <= 0:
            errors.append("queued lease must be positive")

        for notification_type, type_config in self.scheduling.type_schedules.items():
            if type_config.max_interval_minutes < type_config.min_interval_minutes:
                errors.append(f"{notification_type.value}: max interval below min interval")
            if type_config.max_daily_count <= 0:
                errors.append(f"{notification_type.value}: max_daily_count must be positive")
            if type_config.backoff_multiplier < 1:
                errors.append(f"{notification_type.value}: backoff multiplier below 1")
            for window in type_config.optimal_windows + type_config.avoid_windows:
                errors.extend(_window_errors(notification_type.value, window))

        missing = [p.value for p in Priority if p not in self.scheduling.priority_multipliers]
        if missing:
            errors.append(f"priority multipliers missing for: {missing}")

        weights = self.urgency_weights
        if min(weights.staleness, weights.deadline, weights.context) < 0:
            errors.append("urgency weights cannot be negative")

        if errors:
            raise SchedulingError(
                f"Invalid engine configuration ({len(errors)} problem(s))", errors=errors
            )
        return self


def _strictly_ascending(values: list[float]) -> bool:
    return all(a < b for a, b in zip(values, values[1:]))


def _window_errors(owner: str, window: TimeWindow) -> list[str]:
    errors = []
    for clock in (window.start, window.end):
        try:
            parse_clock(clock)
        except ValueError:
            errors.append(f"{owner}: malformed window time {clock!r}")
    if not 0 <= window.weight <= 1:
        errors.append(f"{owner}: window weight {window.weight} outside [0, 1]")
    if any(day < 0 or day > 6 for day in window.days):
        errors.append(f"{owner}: window days must be 0-6")
    return errors
