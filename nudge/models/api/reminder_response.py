"""
Reminder API response models.
Used by routes for output formatting.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from nudge.models.domain.enums import NotificationStatus, NotificationType, Priority
from nudge.models.domain.notification_domain import (
    AdaptiveAdjustment,
    NotificationQueue,
    ScheduledNotification,
    SchedulingDecision,
)
from nudge.models.domain.user_domain import LearnedWindow


class NotificationResponse(BaseModel):
    """Response model for one scheduled notification."""

    id: str = Field(..., description="Notification id")
    user_id: str
    item_id: str
    notification_type: NotificationType
    priority: Priority
    status: NotificationStatus
    scheduled_for: datetime
    attempts: int
    max_attempts: int
    last_error: str | None = None

    @classmethod
    def from_domain(cls, notification: ScheduledNotification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            user_id=notification.user_id,
            item_id=notification.item_id,
            notification_type=notification.notification_type,
            priority=notification.priority,
            status=notification.status,
            scheduled_for=notification.scheduled_for,
            attempts=notification.attempts,
            max_attempts=notification.max_attempts,
            last_error=notification.last_error,
        )


class CandidateResponse(BaseModel):
    """Decision for a candidate, plus the notification when it was enqueued."""

    decision: SchedulingDecision
    notification: NotificationResponse | None = Field(
        None, description="Present when the candidate was enqueued"
    )


class QueueEntryResponse(BaseModel):
    notification: NotificationResponse
    priority_score: float
    can_be_batched: bool
    batch_key: str | None = None


class QueueResponse(BaseModel):
    """Snapshot of one user's queue in delivery order."""

    user_id: str
    size: int
    next_processing_time: datetime | None = None
    last_processed_at: datetime | None = None
    error_count: int = 0
    entries: list[QueueEntryResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, queue: NotificationQueue) -> "QueueResponse":
        return cls(
            user_id=queue.user_id,
            size=len(queue.entries),
            next_processing_time=queue.next_processing_time,
            last_processed_at=queue.last_processed_at,
            error_count=queue.error_count,
            entries=[
                QueueEntryResponse(
                    notification=NotificationResponse.from_domain(entry.notification),
                    priority_score=entry.priority_score,
                    can_be_batched=entry.can_be_batched,
                    batch_key=entry.batch_key,
                )
                for entry in queue.entries
            ],
        )


class CancelResponse(BaseModel):
    notification_id: str
    cancelled: bool


class TickResponse(BaseModel):
    processed: int = Field(..., description="Pipeline runs processed this tick")
    pending_work: int = Field(..., description="Runs still waiting in the work queue")


class UserResponseRecorded(BaseModel):
    notification_id: str
    response_type: str
    hour_of_day: int
    day_of_week: int


class OptimizeResponse(BaseModel):
    """Advisory adjustments from the response heuristic."""

    user_id: str
    sample_size: int
    adjustments: list[AdaptiveAdjustment] = Field(default_factory=list)
    learned_window: LearnedWindow | None = None
