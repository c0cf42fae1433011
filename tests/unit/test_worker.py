from datetime import timedelta

import pytest

from nudge.jobs import sweep_job, worker


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_job_name_from_argv(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["nudge-worker", " Sweep "])

    assert worker._resolve_job_name() == "sweep"


def test_job_name_from_environment(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["nudge-worker"])
    monkeypatch.setenv("NUDGE_WORKER_JOB", "SWEEP")

    assert worker._resolve_job_name() == "sweep"


def test_job_name_defaults_to_driver(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["nudge-worker"])
    monkeypatch.delenv("NUDGE_WORKER_JOB", raising=False)

    assert worker._resolve_job_name() == "driver"


def test_job_name_from_explicit_args():
    assert worker._resolve_job_name(["nudge-worker", "sweep-once"], {}) == "sweep_once"
    assert worker._resolve_job_name(["nudge-worker"], {"NUDGE_WORKER_JOB": "Sweep"}) == "sweep"
    assert worker._resolve_job_name(["nudge-worker", "  "], {}) == worker.DEFAULT_JOB


def test_registry_lists_reminder_jobs():
    assert set(worker.JOB_REGISTRY) == {"driver", "sweep", "sweep_once"}


@pytest.mark.asyncio
async def test_sweep_once_returns_metrics(monkeypatch, service, source, make_item, clock):
    source.put(make_item("STALE-1", updated=clock.now - timedelta(days=12)))
    monkeypatch.setattr(sweep_job, "create_reminder_service", lambda settings: service)

    result = await sweep_job.run_sweep_once()

    assert result["items_seen"] == 1
    assert result["scheduled"] == 1
