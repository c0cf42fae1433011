"""
Pipeline orchestrator - carries one ScheduledNotification attempt through its
stages: analysis, scheduling recheck, content generation, content validation
and delivery.

Run lifecycle: pending -> processing -> completed | failed.

- Each run is one delivery attempt. Reprocessing a finished run is a no-op.
- A run whose notification is no longer queued completes as skipped.
- A scheduling recheck that says "not now" completes the run without content
  or delivery; it is not a failure.
- A stage error or timeout fails the run. The orchestrator never retries;
  the notification's backoff decides whether another run happens.
- Content below the quality bar gets one repair pass, then goes out with the
  best version available.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from nudge.context import EngineContext
from nudge.errors import DeliveryError, NudgeError, PipelineStageError, ValidationError
from nudge.features.pipeline.interfaces import (
    ContentContext,
    ContentGenerator,
    ContentValidator,
    DeliveryChannel,
)
from nudge.features.scheduling.service import SchedulingDecisionEngine
from nudge.infrastructure.audit import AuditLogger
from nudge.infrastructure.observability.logging import (
    bind_pipeline_context,
    clear_pipeline_context,
    get_logger,
)
from nudge.models.domain.enums import NotificationStatus, PipelineStage, PipelineStatus
from nudge.models.domain.notification_domain import (
    Content,
    PipelineRun,
    ScheduledNotification,
    ValidationResult,
)
from nudge.models.domain.user_domain import UserPreferences
from nudge.repositories.notification_repository import NotificationRepository

logger = get_logger(__name__)

T = TypeVar("T")


class PipelineOrchestrator:
    def __init__(
        self,
        ctx: EngineContext,
        engine: SchedulingDecisionEngine,
        repository: NotificationRepository,
        generator: ContentGenerator,
        validator: ContentValidator,
        channel: DeliveryChannel,
        audit: AuditLogger | None = None,
    ):
        self.ctx = ctx
        self.config = ctx.config.pipeline
        self.engine = engine
        self.repository = repository
        self.generator = generator
        self.validator = validator
        self.channel = channel
        self.audit = audit

    async def create_run(self, notification: ScheduledNotification) -> PipelineRun:
        """Create and persist a pending run for the notification's next attempt."""
        run = PipelineRun(
            id=self.ctx.new_id("run"),
            notification_id=notification.id,
            user_id=notification.user_id,
            item_id=notification.item_id,
            notification_type=notification.notification_type,
            priority=notification.priority,
            attempt=notification.attempts + 1,
            urgency=notification.urgency,
            created_at=self.ctx.now(),
        )
        await self.repository.save_run(run)
        logger.info(
            "Pipeline run created",
            run_id=run.id,
            user_id=run.user_id,
            notification_id=run.notification_id,
            attempt=run.attempt,
        )
        return run

    async def process(self, run_id: str) -> PipelineRun | None:
        """
        Execute one run.

        Returns:
            The run in its final state, or None if the run id is unknown
        """
        run = await self.repository.get_run(run_id)
        if run is None:
            logger.info("Pipeline run not found, skipping", run_id=run_id)
            return None
        if run.status.is_finished:
            logger.info("Pipeline run already finished", run_id=run_id, status=run.status.value)
            return run

        notification = await self.engine.get_notification(run.notification_id)
        # Only a queued notification is owned by this run; anything else was
        # settled or reclaimed since the run was created
        if notification is None or notification.status != NotificationStatus.QUEUED:
            reason = "notification missing" if notification is None else f"notification {notification.status.value}"
            return await self._finish(run, PipelineStatus.COMPLETED, skipped_reason=reason)

        run.status = PipelineStatus.PROCESSING
        run.started_at = self.ctx.now()
        await self.repository.save_run(run)

        bind_pipeline_context(run.id, run.user_id, run.notification_id)
        try:
            return await self._execute(run, notification)
        finally:
            clear_pipeline_context()

    async def _execute(self, run: PipelineRun, notification: ScheduledNotification) -> PipelineRun:
        try:
            self._record_analysis(run)

            preferences = await self.repository.get_preferences(run.user_id)
            proceed = await self._stage(
                run,
                PipelineStage.SCHEDULING,
                lambda: self._scheduling_recheck(run, notification, preferences),
            )
            if not proceed:
                return await self._finish(
                    run,
                    PipelineStatus.COMPLETED,
                    skipped_reason=run.stage(PipelineStage.SCHEDULING).result.get("reason"),
                )

            context = ContentContext(notification=notification, urgency=run.urgency, attempt=run.attempt)
            content = await self._stage(
                run,
                PipelineStage.CONTENT_GENERATION,
                lambda: self.generator.generate(context, preferences),
            )
            run.stage(PipelineStage.CONTENT_GENERATION).result = {"title": content.title}

            content = await self._stage(
                run, PipelineStage.CONTENT_VALIDATION, lambda: self._validate_with_repair(run, content)
            )

            await self._stage(run, PipelineStage.DELIVERY, lambda: self._deliver(notification, content))

        except PipelineStageError as e:
            logger.warning(
                "Pipeline stage failed",
                stage=e.stage,
                timed_out=e.timed_out,
                reason=e.message,
            )
            await self._finish(run, PipelineStatus.FAILED, error=e.message, error_stage=PipelineStage(e.stage))
            await self.engine.record_failure(run.notification_id, e.message)
            return run

        await self.engine.record_delivery(run.notification_id)
        return await self._finish(run, PipelineStatus.COMPLETED)

    def _record_analysis(self, run: PipelineRun) -> None:
        # Analysis happened upstream; the run keeps the snapshot it was created with
        record = run.stage(PipelineStage.ANALYSIS)
        record.started_at = record.finished_at = self.ctx.now()
        record.completed = True
        record.result = (
            {"combined_score": run.urgency.combined_score, "staleness": run.urgency.staleness_level.value}
            if run.urgency
            else {"combined_score": None}
        )

    async def _scheduling_recheck(
        self, run: PipelineRun, notification: ScheduledNotification, preferences: UserPreferences
    ) -> bool:
        proceed, reason, defer_until = self.engine.recheck(notification, preferences)
        run.stage(PipelineStage.SCHEDULING).result = {"proceed": proceed, "reason": reason}
        if not proceed:
            if defer_until is not None:
                await self.engine.reschedule(notification.id, defer_until, reason)
            else:
                await self.engine.cancel(notification.id, reason=reason)
        return proceed

    async def _validate_with_repair(self, run: PipelineRun, content: Content) -> Content:
        result = await self.validator.validate(content)
        repaired = False
        if not self._acceptable(result):
            candidate = await self.validator.repair(content)
            candidate_result = await self.validator.validate(candidate)
            repaired = True
            if candidate_result.score >= result.score:
                content, result = candidate, candidate_result

            if not self._acceptable(result):
                if self.config.block_on_invalid_content:
                    raise ValidationError("Content unacceptable after repair", score=result.score)
                logger.warning(
                    "Content still below quality bar after repair, sending best version",
                    score=result.score,
                    suggestions=result.suggestions,
                )

        run.stage(PipelineStage.CONTENT_VALIDATION).result = {
            "score": result.score,
            "acceptable": self._acceptable(result),
            "repaired": repaired,
        }
        return content

    def _acceptable(self, result: ValidationResult) -> bool:
        return result.acceptable and result.score >= self.config.min_content_score

    async def _deliver(self, notification: ScheduledNotification, content: Content) -> None:
        result = await self.channel.deliver(notification, content)
        if not result.delivered:
            raise DeliveryError(result.error or "Delivery channel reported failure", notification_id=notification.id)

    async def _stage(self, run: PipelineRun, stage: PipelineStage, call: Callable[[], Awaitable[T]]) -> T:
        """Run one stage with the stage timeout; any failure becomes a PipelineStageError."""
        record = run.stage(stage)
        record.started_at = self.ctx.now()
        timeout = self.config.stage_timeout_seconds

        try:
            result = await asyncio.wait_for(call(), timeout=timeout)
        except TimeoutError as e:
            record.error = f"timed out after {timeout}s"
            raise PipelineStageError(
                f"{stage.value} timed out after {timeout}s", stage=stage.value, timed_out=True
            ) from e
        except NudgeError as e:
            record.error = e.message
            raise PipelineStageError(e.message, stage=stage.value) from e
        except Exception as e:
            # Collaborators are external code; contain anything they raise to this run
            record.error = f"{type(e).__name__}: {e}"
            raise PipelineStageError(record.error, stage=stage.value) from e

        record.finished_at = self.ctx.now()
        record.completed = True
        return result

    async def _finish(
        self,
        run: PipelineRun,
        status: PipelineStatus,
        error: str | None = None,
        error_stage: PipelineStage | None = None,
        skipped_reason: str | None = None,
    ) -> PipelineRun:
        run.status = status
        run.error = error
        run.error_stage = error_stage
        run.skipped_reason = skipped_reason
        run.completed_at = self.ctx.now()
        await self.repository.save_run(run)

        logger.info(
            "Pipeline run finished",
            run_id=run.id,
            status=status.value,
            error=error,
            skipped_reason=skipped_reason,
        )
        if self.audit is not None:
            await self.audit.log_pipeline_outcome(run)
        return run

