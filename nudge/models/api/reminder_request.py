"""
Reminder API request models.
Used by routes for input validation.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from nudge.models.domain.analysis_domain import ActivityContext
from nudge.models.domain.enums import NotificationType, Priority, ResponseType
from nudge.models.domain.notification_domain import SchedulingDecision
from nudge.models.domain.user_domain import QuietHours, UserPreferences, WorkingHours


class CandidateRequest(BaseModel):
    """Request to evaluate one work item as a reminder candidate."""

    user_id: str = Field(..., min_length=1, description="User who would receive the reminder")
    item_id: str = Field(..., min_length=1, description="Work item id")
    notification_type: NotificationType = Field(..., description="Reminder type")
    priority: Priority | None = Field(
        default=None, description="Reminder priority (derived from urgency when omitted)"
    )
    activity: ActivityContext | None = Field(default=None, description="Assignee/project activity")
    enqueue: bool = Field(default=False, description="Enqueue immediately when accepted")


class EnqueueRequest(BaseModel):
    """Request to enqueue a previously returned decision."""

    decision: SchedulingDecision = Field(..., description="Decision from /reminders/candidates")


class TickRequest(BaseModel):
    now: datetime | None = Field(default=None, description="Override the evaluation time")


class UserResponseRequest(BaseModel):
    """How a user reacted to a delivered reminder."""

    user_id: str = Field(..., min_length=1)
    notification_id: str = Field(..., min_length=1)
    response_type: ResponseType
    responded_at: datetime | None = Field(default=None, description="Defaults to now")


class PreferencesRequest(BaseModel):
    """Full replacement of a user's delivery preferences."""

    timezone: str = Field(default="UTC", description="IANA timezone name")
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    respect_quiet_hours: bool = True
    enabled_types: list[NotificationType] = Field(default_factory=lambda: list(NotificationType))
    notifications_enabled: bool = True

    def to_domain(self, user_id: str) -> UserPreferences:
        return UserPreferences(user_id=user_id, **self.model_dump())
