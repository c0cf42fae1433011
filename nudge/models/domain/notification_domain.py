"""
Notification, queue and pipeline-run models.

A ScheduledNotification is created by the scheduling engine and mutated only
by the engine's queue operations and the pipeline orchestrator. A user's
NotificationQueue holds only non-terminal notifications; terminal ones are
kept under their own key for lookup.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from nudge.models.domain.analysis_domain import UrgencyAssessment
from nudge.models.domain.enums import (
    AdjustmentImpact,
    NotificationStatus,
    NotificationType,
    PipelineStage,
    PipelineStatus,
    Priority,
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ScheduledNotification(BaseModel):
    id: str
    user_id: str
    item_id: str
    notification_type: NotificationType
    priority: Priority
    scheduled_for: datetime
    created_at: datetime
    attempts: int = 0
    max_attempts: int = 3
    backoff_multiplier: float = 1.5
    status: NotificationStatus = NotificationStatus.PENDING
    last_error: str | None = None
    queued_at: datetime | None = None
    delivered_at: datetime | None = None
    urgency: UrgencyAssessment | None = None
    item_summary: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class QueuedNotification(BaseModel):
    notification: ScheduledNotification
    priority_score: int
    can_be_batched: bool = False
    batch_key: str | None = None

    def sort_key(self) -> tuple:
        n = self.notification
        return (-self.priority_score, n.created_at, n.id)


class NotificationQueue(BaseModel):
    user_id: str
    entries: list[QueuedNotification] = Field(default_factory=list)
    next_processing_time: datetime | None = None
    last_processed_at: datetime | None = None
    error_count: int = 0

    def insert(self, entry: QueuedNotification) -> None:
        self.entries.append(entry)
        self.reorder()

    def reorder(self) -> None:
        """Descending composite priority; ties by earliest creation, then id."""
        self.entries.sort(key=QueuedNotification.sort_key)
        pending = [
            e.notification.scheduled_for
            for e in self.entries
            if e.notification.status == NotificationStatus.PENDING
        ]
        self.next_processing_time = min(pending) if pending else None

    def find(self, notification_id: str) -> QueuedNotification | None:
        for entry in self.entries:
            if entry.notification.id == notification_id:
                return entry
        return None

    def remove(self, notification_id: str) -> QueuedNotification | None:
        entry = self.find(notification_id)
        if entry is not None:
            self.entries.remove(entry)
            self.reorder()
        return entry

    def active_for(
        self, item_id: str, notification_type: NotificationType
    ) -> ScheduledNotification | None:
        for entry in self.entries:
            n = entry.notification
            if n.item_id == item_id and n.notification_type == notification_type and not n.is_terminal:
                return n
        return None

    def ready(self, now: datetime, max_count: int) -> list[QueuedNotification]:
        ready = [
            e
            for e in self.entries
            if e.notification.status == NotificationStatus.PENDING
            and e.notification.scheduled_for <= now
        ]
        return ready[: max(0, max_count)]


class AdaptiveAdjustment(BaseModel):
    type: str  # "timing" or "frequency"
    reason: str
    adjustment: str
    impact: AdjustmentImpact


class SchedulingDecision(BaseModel):
    user_id: str
    item_id: str
    notification_type: NotificationType
    priority: Priority
    should_schedule: bool
    scheduled_time: datetime
    reasoning: list[str] = Field(default_factory=list)
    alternatives: list[datetime] = Field(default_factory=list)
    confidence: float = 1.0
    deferred: bool = False
    decided_at: datetime = Field(default_factory=_utcnow)
    urgency: UrgencyAssessment | None = None
    item_summary: str = ""
    # Workload budgets in force when the decision was made
    daily_budget: int | None = None
    weekly_budget: int | None = None


class Content(BaseModel):
    title: str
    body: str
    action_ref: str | None = None


class ValidationResult(BaseModel):
    acceptable: bool
    score: float
    suggestions: list[str] = Field(default_factory=list)


class DeliveryResult(BaseModel):
    delivered: bool
    error: str | None = None


class StageRecord(BaseModel):
    completed: bool = False
    result: dict[str, Any] | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None


class PipelineRun(BaseModel):
    id: str
    notification_id: str
    user_id: str
    item_id: str
    notification_type: NotificationType
    priority: Priority
    attempt: int
    urgency: UrgencyAssessment | None = None
    stages: dict[PipelineStage, StageRecord] = Field(default_factory=dict)
    status: PipelineStatus = PipelineStatus.PENDING
    error: str | None = None
    error_stage: PipelineStage | None = None
    skipped_reason: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def stage(self, stage: PipelineStage) -> StageRecord:
        return self.stages.setdefault(stage, StageRecord())
