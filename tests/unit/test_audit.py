from unittest.mock import AsyncMock

import pytest

from nudge.errors import StoreError
from nudge.infrastructure.audit import AuditLogger


@pytest.mark.asyncio
async def test_log_stores_entry(store):
    audit = AuditLogger(store)

    stored = await audit.log("user-1", "decision_scheduled", "work_item", "PROJ-1", {"confidence": 1.0})

    entries = await audit.recent("user-1")
    assert stored is True
    assert entries[0]["action"] == "decision_scheduled"
    assert entries[0]["resource_id"] == "PROJ-1"
    assert entries[0]["metadata"] == {"confidence": 1.0}


@pytest.mark.asyncio
async def test_log_keeps_most_recent_entries(store):
    audit = AuditLogger(store, max_entries=3)

    for i in range(5):
        await audit.log("user-1", f"event_{i}")

    assert [e["action"] for e in await audit.recent("user-1")] == ["event_2", "event_3", "event_4"]


@pytest.mark.asyncio
async def test_store_failure_never_raises(store, monkeypatch):
    monkeypatch.setattr(store, "set", AsyncMock(side_effect=StoreError("write failed", operation="set")))
    audit = AuditLogger(store)

    assert await audit.log("user-1", "notification_cancelled") is False


@pytest.mark.asyncio
async def test_log_decision_names_the_outcome(store, make_decision):
    audit = AuditLogger(store)

    await audit.log_decision(make_decision(should_schedule=False, reasoning=["Inside quiet hours (18:00-09:00)"]))

    entry = (await audit.recent("user-1"))[-1]
    assert entry["action"] == "decision_vetoed"
    assert entry["metadata"]["reasoning"] == ["Inside quiet hours (18:00-09:00)"]
