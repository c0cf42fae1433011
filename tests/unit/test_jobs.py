from datetime import timedelta

import pytest

from nudge.jobs.driver_job import DriverJob
from nudge.jobs.sweep_job import SweepJob, SweepMetrics
from nudge.models.domain.user_domain import UserPreferences


class StubService:
    def __init__(self, results):
        self.results = list(results)

    async def tick(self):
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def sweep_items(source, make_item, clock):
    source.put(make_item("STALE-1", updated=clock.now - timedelta(days=12)))
    source.put(make_item("DUE-1", updated=clock.now - timedelta(days=1), due_date=clock.now + timedelta(days=2)))
    source.put(make_item("ORPHAN-1", updated=clock.now - timedelta(days=12), assignee_id=None))
    source.put(make_item("DONE-1", status="Done", updated=clock.now - timedelta(days=30)))


# =================================================================
# Driver
# =================================================================


@pytest.mark.asyncio
async def test_driver_survives_tick_errors():
    job = DriverJob(StubService([RuntimeError("store offline"), 3]), interval_seconds=0)

    assert await job.run_once() == 0
    assert await job.run_once() == 3

    status = job.get_job_status()
    assert status["ticks"] == 2
    assert status["tick_errors"] == 1
    assert status["processed"] == 3
    assert status["last_tick_time"] is not None


@pytest.mark.asyncio
async def test_driver_run_forever_stops_after_max_ticks():
    job = DriverJob(StubService([1, 0, 2]), interval_seconds=0)

    await job.run_forever(max_ticks=3)

    assert job.ticks == 3
    assert job.processed == 3


# =================================================================
# Sweep
# =================================================================


def test_sweep_metrics_record_errors():
    metrics = SweepMetrics()

    metrics.record_error("PROJ-1", "source timeout")
    metrics.finalize()

    data = metrics.to_dict()
    assert data["errors"] == 1
    assert data["job_run"] == "sweep"
    assert metrics.error_details[0]["item_id"] == "PROJ-1"

    metrics.reset()
    assert metrics.errors == 0
    assert metrics.error_details == []


@pytest.mark.asyncio
@pytest.mark.usefixtures("sweep_items")
async def test_sweep_schedules_candidates(service):
    metrics = await SweepJob(service).run_once()

    assert metrics["items_seen"] == 3
    assert metrics["scheduled"] == 2
    assert metrics["vetoed"] == 0
    assert metrics["errors"] == 0

    queue = await service.get_queue_snapshot("user-1")
    assert {entry.notification.item_id for entry in queue.entries} == {"STALE-1", "DUE-1"}


@pytest.mark.asyncio
@pytest.mark.usefixtures("sweep_items")
async def test_second_sweep_counts_duplicates(service):
    job = SweepJob(service)
    await job.run_once()

    metrics = await job.run_once()

    assert metrics["duplicates"] == 2
    assert metrics["scheduled"] == 0
    assert len((await service.get_queue_snapshot("user-1")).entries) == 2


@pytest.mark.asyncio
@pytest.mark.usefixtures("sweep_items")
async def test_sweep_counts_vetoes(service):
    await service.update_preferences(UserPreferences(user_id="user-1", notifications_enabled=False))

    metrics = await SweepJob(service).run_once()

    assert metrics["vetoed"] == 2
    assert metrics["scheduled"] == 0


@pytest.mark.asyncio
@pytest.mark.usefixtures("sweep_items")
async def test_sweep_records_source_outage(service, source):
    source.available = False

    metrics = await SweepJob(service).run_once()

    assert metrics["errors"] == 1
    assert metrics["items_seen"] == 0


@pytest.mark.asyncio
async def test_sweep_skips_when_already_running(service):
    job = SweepJob(service)
    job.is_running = True

    assert await job.run_once() == {"skipped": True, "reason": "already_running"}
