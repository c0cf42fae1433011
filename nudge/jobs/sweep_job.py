"""
Sweep Job - periodic candidate discovery.

Queries the work-item source for stale and near-deadline items, evaluates a
reminder for each assignee and enqueues the accepted ones. Items that already
have an active reminder of the same type are counted as duplicates and not
re-evaluated.
"""

import asyncio
from datetime import UTC, datetime

from nudge.config import settings
from nudge.errors import NudgeError, WorkItemSourceError
from nudge.infrastructure.observability.logging import get_logger
from nudge.models.domain.enums import NotificationType
from nudge.models.domain.work_item import WorkItemSnapshot
from nudge.services.reminder_service import ReminderService, create_reminder_service

logger = get_logger(__name__)


class SweepMetrics:
    """Counters for one sweep run."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.items_seen = 0
        self.scheduled = 0
        self.vetoed = 0
        self.duplicates = 0
        self.errors = 0
        self.total_duration_seconds = 0.0
        self.error_details: list[dict] = []

    def record_error(self, item_id: str, error: str):
        self.errors += 1
        self.error_details.append(
            {"item_id": item_id, "error": error, "timestamp": datetime.now(UTC).isoformat()}
        )
        logger.warning("Sweep candidate failed", item_id=item_id, error=error, job_run="sweep")

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "sweep",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "items_seen": self.items_seen,
            "scheduled": self.scheduled,
            "vetoed": self.vetoed,
            "duplicates": self.duplicates,
            "errors": self.errors,
        }


class SweepJob:
    def __init__(self, service: ReminderService):
        self.service = service
        self.metrics = SweepMetrics()
        self.is_running = False
        self.last_run_time: datetime | None = None

    async def run_once(self) -> dict:
        """
        Run one sweep.

        Returns:
            Metrics for this run, or a skip marker when a sweep is in progress
        """
        if self.is_running:
            logger.warning("Sweep already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.metrics.reset()

            candidates = await self._collect_candidates()
            for item, notification_type in candidates:
                await self._evaluate(item, notification_type)

            self.metrics.finalize()
            self.last_run_time = datetime.now(UTC)
            metrics = self.metrics.to_dict()
            logger.info("Sweep completed", **metrics)
            return metrics

        finally:
            self.is_running = False

    async def _collect_candidates(self) -> list[tuple[WorkItemSnapshot, NotificationType]]:
        config = self.service.config
        source = self.service.source
        candidates: list[tuple[WorkItemSnapshot, NotificationType]] = []

        try:
            near_deadline = await source.query_near_deadline(config.deadline.thresholds.medium)
            stale = await source.query_stale(config.staleness.thresholds.stale)
        except WorkItemSourceError as e:
            self.metrics.record_error("*", e.message)
            return candidates

        # Deadline warnings first; an item on both lists gets both reminder types
        candidates.extend((item, NotificationType.DEADLINE_WARNING) for item in near_deadline)
        candidates.extend((item, NotificationType.STALE_REMINDER) for item in stale)
        return candidates

    async def _evaluate(self, item: WorkItemSnapshot, notification_type: NotificationType) -> None:
        self.metrics.items_seen += 1
        if not item.assignee_id:
            logger.debug("Skipping unassigned item", item_id=item.id)
            return

        try:
            queue = await self.service.get_queue_snapshot(item.assignee_id)
            if queue.active_for(item.id, notification_type) is not None:
                self.metrics.duplicates += 1
                return

            decision, notification = await self.service.schedule_candidate(
                item.assignee_id, item.id, notification_type
            )
        except NudgeError as e:
            self.metrics.record_error(item.id, e.message)
            return

        if notification is None:
            self.metrics.vetoed += 1
            logger.debug(
                "Sweep candidate vetoed",
                item_id=item.id,
                user_id=item.assignee_id,
                reason="; ".join(decision.reasoning),
            )
        else:
            self.metrics.scheduled += 1


async def start_sweep_scheduler() -> None:
    """Worker entrypoint: sweep every ``sweep_interval_minutes``."""
    service = create_reminder_service(settings)
    job = SweepJob(service)
    logger.info("Starting sweep scheduler", interval_minutes=settings.sweep_interval_minutes)

    try:
        while True:
            try:
                await job.run_once()
            except Exception as e:
                logger.error("Error in sweep scheduler", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(settings.sweep_interval_minutes * 60)
    finally:
        await service.close()


async def run_sweep_once() -> dict:
    """One-shot sweep for manual runs and external cron."""
    service = create_reminder_service(settings)
    try:
        return await SweepJob(service).run_once()
    finally:
        await service.close()
