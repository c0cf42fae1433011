import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from nudge.context import EngineContext
from nudge.features.scheduling.service import SchedulingDecisionEngine
from nudge.models.domain.config_domain import EngineConfig
from nudge.models.domain.enums import NotificationType, Priority
from nudge.models.domain.notification_domain import (
    Content,
    DeliveryResult,
    SchedulingDecision,
    ValidationResult,
)
from nudge.models.domain.work_item import WorkItemSnapshot
from nudge.repositories.notification_repository import NotificationRepository
from nudge.services.reminder_service import ReminderService
from nudge.services.store.memory import InMemoryStore
from nudge.services.work_item_source import InMemoryWorkItemSource

# Wednesday, mid-morning UTC
NOW = datetime(2024, 3, 6, 10, 0, tzinfo=UTC)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, moment: datetime) -> datetime:
        self.now = moment
        return self.now


class FakeGenerator:
    def __init__(self, content: Content | None = None, delay: float = 0.0, error: Exception | None = None):
        self.content = content or Content(title="Quick check-in", body="PROJ-1 could use an update.")
        self.delay = delay
        self.error = error
        self.calls = 0

    async def generate(self, context, preferences) -> Content:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.content


class FakeValidator:
    """Returns scripted scores in order; the last score repeats."""

    def __init__(self, scores: list[float] | None = None, threshold: float = 0.6):
        self.scores = list(scores or [0.9])
        self.threshold = threshold
        self.validated: list[Content] = []
        self.repair_calls = 0

    async def validate(self, content: Content) -> ValidationResult:
        self.validated.append(content)
        score = self.scores.pop(0) if len(self.scores) > 1 else self.scores[0]
        return ValidationResult(acceptable=score >= self.threshold, score=score)

    async def repair(self, content: Content) -> Content:
        self.repair_calls += 1
        return Content(title=content.title, body=f"{content.body} (softened)", action_ref=content.action_ref)


class FakeChannel:
    def __init__(self, delivered: bool = True, error: str | None = None):
        self.delivered = delivered
        self.error = error
        self.deliveries: list[tuple[str, Content]] = []

    async def deliver(self, notification, content: Content) -> DeliveryResult:
        self.deliveries.append((notification.id, content))
        return DeliveryResult(delivered=self.delivered, error=self.error)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def ctx(config, store, clock):
    return EngineContext.create(config, store, clock=clock, seed=42)


@pytest.fixture
def repository(store):
    return NotificationRepository(store)


@pytest.fixture
def engine(ctx, repository):
    return SchedulingDecisionEngine(ctx, repository)


@pytest.fixture
def make_item(clock):
    def _make(item_id: str = "PROJ-1", **overrides) -> WorkItemSnapshot:
        fields = {
            "id": item_id,
            "item_type": "Task",
            "priority": "Medium",
            "status": "In Progress",
            "created": clock.now - timedelta(days=40),
            "updated": clock.now - timedelta(days=10),
            "assignee_id": "user-1",
            "summary": "Migrate billing exports",
        }
        fields.update(overrides)
        return WorkItemSnapshot(**fields)

    return _make


@pytest.fixture
def make_decision(clock):
    def _make(
        item_id: str = "PROJ-1",
        user_id: str = "user-1",
        notification_type: NotificationType = NotificationType.STALE_REMINDER,
        priority: Priority = Priority.MEDIUM,
        scheduled_time: datetime | None = None,
        **overrides,
    ) -> SchedulingDecision:
        return SchedulingDecision(
            user_id=user_id,
            item_id=item_id,
            notification_type=notification_type,
            priority=priority,
            should_schedule=overrides.pop("should_schedule", True),
            scheduled_time=scheduled_time or clock.now,
            decided_at=clock.now,
            **overrides,
        )

    return _make


@pytest.fixture
def source(clock):
    return InMemoryWorkItemSource(clock=clock)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def validator():
    return FakeValidator()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def service(ctx, source, generator, validator, channel):
    return ReminderService(ctx, source, generator=generator, validator=validator, channel=channel)
