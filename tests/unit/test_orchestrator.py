from datetime import UTC, datetime

import pytest

from nudge.features.pipeline.orchestrator import PipelineOrchestrator
from nudge.infrastructure.audit import AuditLogger
from nudge.models.domain.enums import NotificationStatus, PipelineStage, PipelineStatus
from nudge.models.domain.user_domain import UserPreferences


@pytest.fixture
def audit(store):
    return AuditLogger(store)


@pytest.fixture
def orchestrator(ctx, engine, repository, generator, validator, channel, audit):
    return PipelineOrchestrator(ctx, engine, repository, generator, validator, channel, audit=audit)


@pytest.fixture
def queued_run(engine, orchestrator, make_decision):
    async def _make(**kwargs):
        notification = await engine.enqueue(make_decision(**kwargs))
        await engine.mark_queued(notification.user_id, [notification.id])
        notification = await engine.get_notification(notification.id)
        return notification, await orchestrator.create_run(notification)

    return _make


@pytest.mark.asyncio
async def test_happy_path_delivers(orchestrator, queued_run, engine, channel, audit):
    notification, run = await queued_run()

    result = await orchestrator.process(run.id)

    assert result.status == PipelineStatus.COMPLETED
    assert result.skipped_reason is None
    assert all(result.stages[stage].completed for stage in PipelineStage)
    assert result.stages[PipelineStage.CONTENT_VALIDATION].result["repaired"] is False
    assert [delivered_id for delivered_id, _ in channel.deliveries] == [notification.id]

    stored = await engine.get_notification(notification.id)
    assert stored.status == NotificationStatus.DELIVERED
    assert (await audit.recent("user-1"))[-1]["action"] == "pipeline_completed"


@pytest.mark.asyncio
async def test_run_is_persisted(orchestrator, queued_run, repository):
    _, run = await queued_run()

    await orchestrator.process(run.id)

    stored = await repository.get_run(run.id)
    assert stored.status == PipelineStatus.COMPLETED
    assert stored.attempt == 1
    assert stored.completed_at is not None


@pytest.mark.asyncio
async def test_disabled_preferences_cancel_without_generation(
    orchestrator, queued_run, repository, engine, generator
):
    notification, run = await queued_run()
    await repository.save_preferences(UserPreferences(user_id="user-1", notifications_enabled=False))

    result = await orchestrator.process(run.id)

    assert result.status == PipelineStatus.COMPLETED
    assert result.skipped_reason == "User has turned reminders off"
    assert PipelineStage.CONTENT_GENERATION not in result.stages
    assert generator.calls == 0
    assert (await engine.get_notification(notification.id)).status == NotificationStatus.CANCELLED


@pytest.mark.asyncio
async def test_quiet_hours_at_pickup_reschedules(orchestrator, queued_run, engine, clock, channel):
    notification, run = await queued_run()
    clock.set(datetime(2024, 3, 6, 19, 0, tzinfo=UTC))

    result = await orchestrator.process(run.id)

    stored = await engine.get_notification(notification.id)
    assert result.status == PipelineStatus.COMPLETED
    assert result.skipped_reason == "Inside quiet hours at pickup"
    assert stored.status == NotificationStatus.PENDING
    assert stored.attempts == 0
    assert stored.scheduled_for == datetime(2024, 3, 7, 9, 0, tzinfo=UTC)
    assert channel.deliveries == []


@pytest.mark.asyncio
async def test_low_score_gets_one_repair(orchestrator, queued_run, validator, channel):
    validator.scores = [0.4, 0.8]
    _, run = await queued_run()

    result = await orchestrator.process(run.id)

    assert validator.repair_calls == 1
    assert result.stages[PipelineStage.CONTENT_VALIDATION].result == {
        "score": 0.8,
        "acceptable": True,
        "repaired": True,
    }
    assert channel.deliveries[0][1].body.endswith("(softened)")


@pytest.mark.asyncio
async def test_unrepairable_content_still_sends_best_version(orchestrator, queued_run, validator, channel):
    validator.scores = [0.3, 0.2]
    _, run = await queued_run()

    result = await orchestrator.process(run.id)

    assert result.status == PipelineStatus.COMPLETED
    assert validator.repair_calls == 1
    assert result.stages[PipelineStage.CONTENT_VALIDATION].result["acceptable"] is False
    assert not channel.deliveries[0][1].body.endswith("(softened)")


@pytest.mark.asyncio
async def test_blocking_policy_fails_invalid_content(orchestrator, queued_run, validator, config, channel, engine):
    config.pipeline.block_on_invalid_content = True
    validator.scores = [0.3]
    notification, run = await queued_run()

    result = await orchestrator.process(run.id)

    assert result.status == PipelineStatus.FAILED
    assert result.error_stage == PipelineStage.CONTENT_VALIDATION
    assert channel.deliveries == []
    assert (await engine.get_notification(notification.id)).attempts == 1


@pytest.mark.asyncio
async def test_channel_failure_applies_backoff(orchestrator, queued_run, channel, engine):
    channel.delivered = False
    channel.error = "smtp down"
    notification, run = await queued_run()

    result = await orchestrator.process(run.id)

    assert result.status == PipelineStatus.FAILED
    assert result.error_stage == PipelineStage.DELIVERY
    assert result.error == "smtp down"
    stored = await engine.get_notification(notification.id)
    assert stored.status == NotificationStatus.PENDING
    assert stored.attempts == 1
    assert stored.last_error == "smtp down"


@pytest.mark.asyncio
async def test_finished_run_is_not_reprocessed(orchestrator, queued_run, channel, engine):
    channel.delivered = False
    notification, run = await queued_run()
    await orchestrator.process(run.id)

    again = await orchestrator.process(run.id)

    assert again.status == PipelineStatus.FAILED
    assert len(channel.deliveries) == 1
    assert (await engine.get_notification(notification.id)).attempts == 1


@pytest.mark.asyncio
async def test_next_run_counts_the_attempt(orchestrator, queued_run, channel, engine):
    channel.delivered = False
    notification, run = await queued_run()
    await orchestrator.process(run.id)

    retry = await orchestrator.create_run(await engine.get_notification(notification.id))

    assert retry.attempt == 2
    assert retry.id != run.id


@pytest.mark.asyncio
async def test_stage_timeout_fails_run(orchestrator, queued_run, config, generator):
    config.pipeline.stage_timeout_seconds = 0.05
    generator.delay = 1
    _, run = await queued_run()

    result = await orchestrator.process(run.id)

    assert result.status == PipelineStatus.FAILED
    assert result.error_stage == PipelineStage.CONTENT_GENERATION
    assert "timed out" in result.error
    assert "timed out" in result.stages[PipelineStage.CONTENT_GENERATION].error


@pytest.mark.asyncio
async def test_generator_exception_is_contained(orchestrator, queued_run, generator):
    generator.error = RuntimeError("model offline")
    _, run = await queued_run()

    result = await orchestrator.process(run.id)

    assert result.status == PipelineStatus.FAILED
    assert result.error == "RuntimeError: model offline"


@pytest.mark.asyncio
async def test_unknown_run_returns_none(orchestrator):
    assert await orchestrator.process("run_missing") is None


@pytest.mark.asyncio
async def test_cancelled_notification_is_skipped(orchestrator, queued_run, engine, generator):
    notification, run = await queued_run()
    await engine.cancel(notification.id)

    result = await orchestrator.process(run.id)

    assert result.status == PipelineStatus.COMPLETED
    assert result.skipped_reason == "notification cancelled"
    assert generator.calls == 0


@pytest.mark.asyncio
async def test_run_for_returned_notification_is_skipped(orchestrator, queued_run, engine, generator, channel):
    notification, run = await queued_run()
    await engine.return_to_pending(notification.user_id, [notification.id], "hand-off failed")

    result = await orchestrator.process(run.id)

    assert result.status == PipelineStatus.COMPLETED
    assert result.skipped_reason == "notification pending"
    assert generator.calls == 0
    assert channel.deliveries == []
    assert (await engine.get_notification(notification.id)).status == NotificationStatus.PENDING
