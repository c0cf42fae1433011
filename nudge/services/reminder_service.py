"""
Reminder Service - the exposed API of the reminder engine.

Wires the analyzers, the scheduling engine and the pipeline orchestrator
around one EngineContext:

- evaluate_candidate: analyze one item for one user and decide whether/when
- enqueue: accept a decision into the user's queue
- tick: hand ready notifications to the pipeline and process queued runs
- get_queue_snapshot / cancel / batch_groups: queue inspection and control
- record_user_response / optimize_schedule: adaptive response history
"""

from __future__ import annotations

from datetime import datetime

from nudge.config import Settings
from nudge.context import EngineContext
from nudge.errors import StoreError, WorkItemSourceError
from nudge.features.analytics import (
    DeadlineAnalyzer,
    StalenessAnalyzer,
    WorkloadAnalyzer,
    combine,
    derive_priority,
)
from nudge.features.pipeline.defaults import (
    LoggingDeliveryChannel,
    TemplateContentGenerator,
    ToneContentValidator,
)
from nudge.features.pipeline.interfaces import (
    ContentGenerator,
    ContentValidator,
    DeliveryChannel,
    WorkItemSource,
)
from nudge.features.pipeline.orchestrator import PipelineOrchestrator
from nudge.features.scheduling.adaptive import AdaptiveResult, ResponseHeuristic
from nudge.features.scheduling.service import SchedulingDecisionEngine
from nudge.infrastructure.audit import AuditLogger
from nudge.infrastructure.observability.logging import get_logger
from nudge.models.domain.analysis_domain import ActivityContext
from nudge.models.domain.enums import (
    CapacityLevel,
    NotificationStatus,
    NotificationType,
    PipelineStatus,
    Priority,
    ResponseType,
)
from nudge.models.domain.notification_domain import (
    NotificationQueue,
    QueuedNotification,
    ScheduledNotification,
    SchedulingDecision,
)
from nudge.models.domain.user_domain import UserPreferences, UserResponse, UserWorkloadProfile
from nudge.models.domain.work_item import as_utc
from nudge.repositories.notification_repository import NotificationRepository
from nudge.services.store import build_store
from nudge.services.work_item_source import InMemoryWorkItemSource

logger = get_logger(__name__)


class ReminderService:
    def __init__(
        self,
        ctx: EngineContext,
        source: WorkItemSource,
        generator: ContentGenerator | None = None,
        validator: ContentValidator | None = None,
        channel: DeliveryChannel | None = None,
    ):
        self.ctx = ctx
        self.config = ctx.config
        self.source = source
        self.repository = NotificationRepository(ctx.store)
        self.audit = AuditLogger(ctx.store)

        self.staleness = StalenessAnalyzer(self.config.staleness, clock=ctx.now)
        self.deadline = DeadlineAnalyzer(self.config.deadline, clock=ctx.now)
        self.workload = WorkloadAnalyzer(self.config.workload, clock=ctx.now)
        self.heuristic = ResponseHeuristic(self.config.scheduling.adaptive)

        self.engine = SchedulingDecisionEngine(ctx, self.repository)
        self.orchestrator = PipelineOrchestrator(
            ctx,
            self.engine,
            self.repository,
            generator=generator or TemplateContentGenerator(ctx.rng),
            validator=validator or ToneContentValidator(),
            channel=channel or LoggingDeliveryChannel(),
            audit=self.audit,
        )

    # =================================================================
    # DECISIONS
    # =================================================================

    async def evaluate_candidate(
        self,
        user_id: str,
        item_id: str,
        notification_type: NotificationType,
        priority: Priority | None = None,
        activity: ActivityContext | None = None,
    ) -> SchedulingDecision:
        """
        Analyze one work item for one user and decide whether and when to remind.

        Priority is derived from the urgency assessment when omitted.

        Raises:
            WorkItemNotFound: If the source has no such item
            WorkItemSourceError: If the item lookup fails
            AnalysisError: If the item lacks the timestamps analysis needs
        """
        item = await self.source.get_item(item_id)
        now = self.ctx.now()

        staleness = self.staleness.assess(item, activity, now)
        deadline = self.deadline.assess(item, now)
        urgency = combine(item, staleness, deadline, now, self.config.urgency_weights)
        priority = priority or derive_priority(urgency)

        await self.engine.load_user(user_id)
        workload = await self._workload_with_usage(user_id, now)
        preferences = await self.repository.get_preferences(user_id)
        learned_window = await self.repository.get_learned_window(user_id)

        decision = self.engine.decide(
            user_id,
            item_id,
            notification_type,
            priority,
            urgency,
            workload,
            preferences,
            now=now,
            learned_window=learned_window,
        )
        decision.item_summary = item.summary
        await self.audit.log_decision(decision)
        return decision

    async def enqueue(self, decision: SchedulingDecision) -> ScheduledNotification:
        notification = await self.engine.enqueue(decision)
        await self.audit.log(
            user_id=notification.user_id,
            action="notification_enqueued",
            resource_type="notification",
            resource_id=notification.id,
            metadata={
                "item_id": notification.item_id,
                "scheduled_for": notification.scheduled_for.isoformat(),
            },
        )
        return notification

    async def schedule_candidate(
        self,
        user_id: str,
        item_id: str,
        notification_type: NotificationType,
        priority: Priority | None = None,
    ) -> tuple[SchedulingDecision, ScheduledNotification | None]:
        """Evaluate and, when accepted, enqueue in one call."""
        decision = await self.evaluate_candidate(user_id, item_id, notification_type, priority)
        if not decision.should_schedule:
            return decision, None
        return decision, await self.enqueue(decision)

    async def _workload_with_usage(self, user_id: str, now: datetime) -> UserWorkloadProfile:
        """
        Fresh workload profile with remaining budgets reduced by what the user
        already has counted. Falls back to the last stored profile, then to a
        light profile, when the source is unavailable.
        """
        try:
            items = await self.source.get_assigned_items(user_id)
            profile = self.workload.assess(user_id, items, now)
            await self.repository.save_workload(profile)
        except WorkItemSourceError as e:
            logger.warning("Workload source unavailable, using last profile", user_id=user_id, error=e.message)
            profile = await self.repository.get_workload(user_id)
            if profile is None:
                budget = self.config.workload.budget_for(CapacityLevel.LIGHT)
                profile = UserWorkloadProfile.unknown(user_id, budget.daily, budget.weekly)

        counts = self.engine.rate_limiter.counts(user_id, now)
        return self.workload.apply_usage(profile, counts.day, counts.week)

    # =================================================================
    # DRIVER
    # =================================================================

    async def tick(self, now: datetime | None = None) -> int:
        """
        One driver step: move every user's ready notifications into the work
        queue, then process up to ``max_pipelines_per_tick`` runs.

        Never raises for a single run; a failing run is logged and the
        loop moves on to the next id.

        Returns:
            Number of runs processed this tick
        """
        now = as_utc(now or self.ctx.now())
        pipeline = self.config.pipeline

        for user_id in await self.repository.list_users():
            try:
                await self._collect_ready(user_id, now)
            except StoreError as e:
                logger.error("Could not collect ready notifications", user_id=user_id, error=e.message)

        processed = 0
        for run_id in await self.repository.pop_work(pipeline.max_pipelines_per_tick):
            try:
                run = await self.orchestrator.process(run_id)
            except Exception as e:
                # One broken run must not stop the driver loop
                logger.error(
                    "Pipeline run crashed",
                    run_id=run_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._recover_crashed_run(run_id, f"{type(e).__name__}: {e}")
                continue
            if run is not None:
                processed += 1

        if processed:
            logger.info("Tick completed", processed=processed)
        return processed

    async def _collect_ready(self, user_id: str, now: datetime) -> None:
        await self.engine.reclaim_stale_queued(user_id, now)
        ready = await self.engine.get_ready_for_delivery(
            user_id, self.config.pipeline.max_ready_per_user, now
        )
        if not ready:
            return
        marked = await self.engine.mark_queued(user_id, [entry.notification.id for entry in ready], now)
        try:
            run_ids = [(await self.orchestrator.create_run(notification)).id for notification in marked]
            await self.repository.push_work(run_ids)
        except StoreError as e:
            # Runs that never reached the work queue would leave these queued for good
            await self.engine.return_to_pending(
                user_id, [notification.id for notification in marked], f"hand-off failed: {e.message}"
            )
            raise

    async def _recover_crashed_run(self, run_id: str, error: str) -> None:
        """
        Fail the run and put its notification under backoff so it is not stuck
        queued. Safe to repeat: a run finished by an earlier, partial recovery
        still gets its notification failed while that one is queued.
        """
        try:
            run = await self.repository.get_run(run_id)
            if run is None:
                return
            if not run.status.is_finished:
                run.status = PipelineStatus.FAILED
                run.error = error
                run.completed_at = self.ctx.now()
                await self.repository.save_run(run)

            notification = await self.engine.get_notification(run.notification_id)
            if notification is not None and notification.status == NotificationStatus.QUEUED:
                await self.engine.record_failure(run.notification_id, run.error or error)
        except StoreError as e:
            logger.error("Could not recover crashed run", run_id=run_id, error=e.message)

    # =================================================================
    # QUEUE
    # =================================================================

    async def get_queue_snapshot(self, user_id: str) -> NotificationQueue:
        return await self.engine.get_queue(user_id)

    async def get_notification(self, notification_id: str) -> ScheduledNotification | None:
        return await self.engine.get_notification(notification_id)

    async def cancel(self, notification_id: str, reason: str = "cancelled") -> bool:
        cancelled = await self.engine.cancel(notification_id, reason=reason)
        if cancelled:
            notification = await self.engine.get_notification(notification_id)
            if notification is not None:
                await self.audit.log(
                    user_id=notification.user_id,
                    action="notification_cancelled",
                    resource_type="notification",
                    resource_id=notification_id,
                    metadata={"reason": reason},
                )
        return cancelled

    async def batch_groups(self, user_id: str) -> dict[str, list[QueuedNotification]]:
        return await self.engine.batch_groups(user_id)

    # =================================================================
    # PREFERENCES AND ADAPTIVE HISTORY
    # =================================================================

    async def get_preferences(self, user_id: str) -> UserPreferences:
        return await self.repository.get_preferences(user_id)

    async def update_preferences(self, preferences: UserPreferences) -> UserPreferences:
        await self.repository.save_preferences(preferences)
        logger.info("Preferences updated", user_id=preferences.user_id, timezone=preferences.timezone)
        return preferences

    async def record_user_response(
        self,
        user_id: str,
        notification_id: str,
        response_type: ResponseType,
        responded_at: datetime | None = None,
    ) -> UserResponse:
        """
        Append a response to the user's bounded history.

        Hour and weekday are taken in the user's local time at delivery
        (response time when the delivery time is unknown).
        """
        responded_at = as_utc(responded_at or self.ctx.now())
        notification = await self.engine.get_notification(notification_id)
        delivered_at = notification.delivered_at if notification is not None else None

        preferences = await self.repository.get_preferences(user_id)
        local = preferences.local(delivered_at or responded_at)
        response = UserResponse(
            notification_id=notification_id,
            response_type=response_type,
            hour_of_day=local.hour,
            day_of_week=local.weekday(),
            response_minutes=(
                round((responded_at - delivered_at).total_seconds() / 60, 2) if delivered_at else None
            ),
            recorded_at=responded_at,
        )
        await self.repository.append_response(user_id, response)
        logger.info(
            "User response recorded",
            user_id=user_id,
            notification_id=notification_id,
            response_type=response_type.value,
        )
        return response

    async def optimize_schedule(self, user_id: str) -> AdaptiveResult:
        """
        Run the response heuristic and persist any learned window.

        Adjustments are advisory; the learned window only ever adds a lower
        weight optimal window behind the hard gates.
        """
        responses = await self.repository.get_responses(user_id)
        result = self.heuristic.analyze(user_id, responses, self.ctx.now())

        if result.learned_window is not None:
            await self.repository.save_learned_window(user_id, result.learned_window)
        if result.adjustments:
            await self.audit.log(
                user_id=user_id,
                action="schedule_optimized",
                resource_type="user",
                resource_id=user_id,
                metadata={"adjustments": [a.model_dump(mode="json") for a in result.adjustments]},
            )
        return result

    async def close(self) -> None:
        await self.ctx.store.close()


def create_reminder_service(
    settings: Settings,
    source: WorkItemSource | None = None,
    ctx: EngineContext | None = None,
) -> ReminderService:
    """Build a service from environment settings (store backend, profile, seed)."""
    if ctx is None:
        store = build_store(settings.store_backend, settings.redis_url, settings.redis_timeout_seconds)
        ctx = EngineContext.create(settings.build_engine_config(), store, seed=settings.random_seed)
    return ReminderService(ctx, source or InMemoryWorkItemSource(clock=ctx.now))
