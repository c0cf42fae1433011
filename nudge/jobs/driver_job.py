"""
Driver Job - calls ReminderService.tick() on a fixed interval.

The loop survives every per-tick error: a failing tick is logged and the
next one runs after the usual interval.
"""

import asyncio
from datetime import UTC, datetime

from nudge.config import settings
from nudge.infrastructure.observability.logging import get_logger
from nudge.services.reminder_service import ReminderService, create_reminder_service

logger = get_logger(__name__)


class DriverJob:
    def __init__(self, service: ReminderService, interval_seconds: float):
        self.service = service
        self.interval_seconds = interval_seconds
        self.ticks = 0
        self.processed = 0
        self.tick_errors = 0
        self.last_tick_time: datetime | None = None

    async def run_once(self) -> int:
        """Run one tick; errors are counted and logged, never raised."""
        try:
            processed = await self.service.tick()
        except Exception as e:
            self.tick_errors += 1
            logger.error("Driver tick failed", error=str(e), error_type=type(e).__name__)
            return 0
        finally:
            self.ticks += 1
            self.last_tick_time = datetime.now(UTC)

        self.processed += processed
        return processed

    async def run_forever(self, max_ticks: int | None = None) -> None:
        logger.info("Starting reminder driver loop", interval_seconds=self.interval_seconds)
        while max_ticks is None or self.ticks < max_ticks:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)
        logger.info("Reminder driver loop stopped", **self.get_job_status())

    def get_job_status(self) -> dict:
        return {
            "job_name": "driver",
            "ticks": self.ticks,
            "processed": self.processed,
            "tick_errors": self.tick_errors,
            "last_tick_time": self.last_tick_time.isoformat() if self.last_tick_time else None,
            "interval_seconds": self.interval_seconds,
        }


async def start_driver_loop() -> None:
    """Worker entrypoint: build the service from settings and tick until stopped."""
    service = create_reminder_service(settings)
    job = DriverJob(service, settings.tick_interval_seconds)
    try:
        await job.run_forever()
    finally:
        await service.close()
