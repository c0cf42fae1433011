"""
Analysis result models.

Assessments are derived and cheap to regenerate; pipeline runs snapshot the
combined UrgencyAssessment for auditability.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from nudge.errors import AnalysisError
from nudge.models.domain.enums import StalenessLevel, UrgencyLevel


class ActivityContext(BaseModel):
    """Assignee and project activity used to adjust staleness (scores in [0, 1])."""

    assignee_activity_score: float = Field(default=0.0, ge=0.0, le=1.0)
    project_activity_score: float = Field(default=0.5, ge=0.0, le=1.0)


class StalenessAssessment(BaseModel):
    days_since_update: int
    days_since_creation: int
    adjusted_days: float
    activity_adjustment: float
    level: StalenessLevel
    confidence: float


class DeadlineAssessment(BaseModel):
    has_deadline: bool
    days_remaining: float | None = None
    urgency_level: UrgencyLevel = UrgencyLevel.LOW
    is_overdue: bool = False
    deadline: datetime | None = None
    deadline_source: str | None = None  # "due_date" or the service-level target name


class UrgencyAssessment(BaseModel):
    item_id: str
    analyzed_at: datetime
    staleness_level: StalenessLevel
    staleness_confidence: float
    deadline_urgency: UrgencyLevel
    days_remaining: float | None = None
    is_overdue: bool = False
    combined_score: float


T = TypeVar("T")


@dataclass(slots=True)
class BatchAssessment(Generic[T]):
    """Per-item results of a batch run; failed items are reported, never raised."""

    results: dict[str, T] = field(default_factory=dict)
    failures: dict[str, AnalysisError] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.results)
