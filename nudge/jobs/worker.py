"""
Background worker entrypoint for the reminder engine.

Usage: ``nudge-worker [driver|sweep|sweep_once]``. Without an argument the job
comes from NUDGE_WORKER_JOB, falling back to the tick driver.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable, Mapping, Sequence

from nudge.config import settings
from nudge.infrastructure.observability.logging import get_logger, setup_logging
from nudge.jobs.driver_job import start_driver_loop
from nudge.jobs.sweep_job import run_sweep_once, start_sweep_scheduler

logger = get_logger(__name__)

DEFAULT_JOB = "driver"

JobCoroutine = Callable[[], Awaitable[object]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "driver": start_driver_loop,
    "sweep": start_sweep_scheduler,
    "sweep_once": run_sweep_once,
}


def _normalize(name: str) -> str:
    return name.strip().lower().replace("-", "_")


def _resolve_job_name(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> str:
    argv = sys.argv if argv is None else argv
    environ = os.environ if environ is None else environ
    if len(argv) > 1 and argv[1].strip():
        return _normalize(argv[1])
    return _normalize(environ.get("NUDGE_WORKER_JOB", DEFAULT_JOB))


async def run_worker(job_name: str | None = None) -> None:
    """Run one registered job until it returns (the loops never do)."""
    name = _normalize(job_name) if job_name else _resolve_job_name()
    job = JOB_REGISTRY.get(name)
    if job is None:
        raise ValueError(f"Unknown worker job '{name}'. Available jobs: {', '.join(sorted(JOB_REGISTRY))}")

    logger.info(
        "Starting reminder worker",
        job=name,
        profile=settings.config_profile,
        store_backend=settings.store_backend,
        environment=settings.environment,
    )
    result = await job()
    if result is not None:
        logger.info("Reminder worker finished", job=name, result=result)


def main() -> None:
    setup_logging(log_level=settings.log_level, json_logs=settings.json_logs)
    asyncio.run(run_worker(_resolve_job_name()))


if __name__ == "__main__":
    main()
