from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class WorkItemSnapshot(BaseModel):
    """
    Read-only view of one tracked work item, supplied by the work-item source.

    Timestamps are optional at the model level so a malformed item can still be
    represented; analyzers reject it with an AnalysisError instead.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    item_type: str = "Task"
    priority: str = "Medium"
    status: str = "Open"
    created: datetime | None = None
    updated: datetime | None = None
    due_date: datetime | None = None
    assignee_id: str | None = None
    project_id: str | None = None
    summary: str = ""

    # Activity signals
    has_recent_comment: bool = False
    has_recent_worklog: bool = False
    has_recent_status_change: bool = False

    labels: list[str] = Field(default_factory=list)

    @property
    def has_recent_activity(self) -> bool:
        return self.has_recent_comment or self.has_recent_worklog or self.has_recent_status_change


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so arithmetic never mixes naive and aware values."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
