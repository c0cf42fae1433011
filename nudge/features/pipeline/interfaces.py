"""
Collaborator contracts consumed by the pipeline and the reminder service.

Implementations are swappable: the defaults in ``defaults.py`` are
template-driven and in-process; production wiring can inject real channels.
"""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from pydantic import BaseModel

from nudge.models.domain.analysis_domain import UrgencyAssessment
from nudge.models.domain.notification_domain import (
    Content,
    DeliveryResult,
    ScheduledNotification,
    ValidationResult,
)
from nudge.models.domain.user_domain import UserPreferences
from nudge.models.domain.work_item import WorkItemSnapshot


class ContentContext(BaseModel):
    notification: ScheduledNotification
    urgency: UrgencyAssessment | None = None
    attempt: int = 1


@runtime_checkable
class ContentGenerator(Protocol):
    async def generate(self, context: ContentContext, preferences: UserPreferences) -> Content: ...


@runtime_checkable
class ContentValidator(Protocol):
    async def validate(self, content: Content) -> ValidationResult: ...

    async def repair(self, content: Content) -> Content: ...


@runtime_checkable
class DeliveryChannel(Protocol):
    async def deliver(self, notification: ScheduledNotification, content: Content) -> DeliveryResult: ...


@runtime_checkable
class WorkItemSource(Protocol):
    """
    Work-item lookups.

    Empty results are normal. Transient failures raise WorkItemSourceError;
    an unknown id raises WorkItemNotFound.
    """

    async def get_item(self, item_id: str) -> WorkItemSnapshot: ...

    async def query_stale(
        self, threshold_days: float, filters: dict | None = None
    ) -> Sequence[WorkItemSnapshot]: ...

    async def query_near_deadline(
        self, days_ahead: float, filters: dict | None = None
    ) -> Sequence[WorkItemSnapshot]: ...

    async def get_assigned_items(self, user_id: str) -> Sequence[WorkItemSnapshot]: ...
