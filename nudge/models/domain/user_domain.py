from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from nudge.models.domain.enums import CapacityLevel, NotificationType, ResponseType
from nudge.utils.business_calendar import parse_clock


class QuietHours(BaseModel):
    """Do-not-disturb window in the user's local time; may wrap past midnight."""

    enabled: bool = True
    start: str = "18:00"
    end: str = "09:00"

    @field_validator("start", "end")
    @classmethod
    def _validate_clock(cls, value: str) -> str:
        parse_clock(value)
        return value


class WorkingHours(BaseModel):
    start_hour: int = Field(default=9, ge=0, le=23)
    end_hour: int = Field(default=17, ge=1, le=24)


class UserPreferences(BaseModel):
    """Per-user delivery preferences."""

    model_config = ConfigDict(extra="ignore")

    user_id: str
    timezone: str = "UTC"
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    respect_quiet_hours: bool = True
    enabled_types: list[NotificationType] = Field(default_factory=lambda: list(NotificationType))
    notifications_enabled: bool = True

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def local(self, moment: datetime) -> datetime:
        return moment.astimezone(self.zone)


class UserWorkloadProfile(BaseModel):
    user_id: str
    active_item_count: int = 0
    overdue_count: int = 0
    recent_activity_score: float = 0.0
    capacity_level: CapacityLevel = CapacityLevel.LIGHT
    daily_budget: int = 0
    weekly_budget: int = 0
    remaining_daily_budget: int = 0
    remaining_weekly_budget: int = 0
    computed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def unknown(cls, user_id: str, daily_budget: int, weekly_budget: int) -> "UserWorkloadProfile":
        """Fallback used when no profile can be computed or read: treat as light."""
        return cls(
            user_id=user_id,
            capacity_level=CapacityLevel.LIGHT,
            daily_budget=daily_budget,
            weekly_budget=weekly_budget,
            remaining_daily_budget=daily_budget,
            remaining_weekly_budget=weekly_budget,
        )


class UserResponse(BaseModel):
    """How a user reacted to a delivered reminder."""

    notification_id: str
    response_type: ResponseType
    hour_of_day: int = Field(ge=0, le=23)
    day_of_week: int = Field(ge=0, le=6)  # Monday = 0
    response_minutes: float | None = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class LearnedWindow(BaseModel):
    """Preferred delivery hours learned from response history (advisory)."""

    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=1, le=24)
    score: float
    sample_size: int
    learned_at: datetime
