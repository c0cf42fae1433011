"""
Tests for the HTTP surface: health checks and the reminder routes.
"""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from nudge.main import create_app

THURSDAY_MORNING = datetime(2024, 3, 7, 9, 0, tzinfo=UTC)


@pytest.fixture
def client(service, source, make_item, clock):
    source.put(make_item("PROJ-1", updated=clock.now - timedelta(days=12)))
    source.put(make_item("PROJ-2", updated=clock.now - timedelta(days=12), summary="Rotate API keys"))
    with TestClient(create_app(service=service)) as client:
        yield client


def _candidate(client, item_id="PROJ-1", **overrides):
    body = {
        "user_id": "user-1",
        "item_id": item_id,
        "notification_type": "stale-reminder",
        "enqueue": True,
    }
    body.update(overrides)
    return client.post("/reminders/candidates", json=body)


def test_healthz_endpoint(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "nudge"}


def test_readyz_endpoint(client):
    response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["store"]["ok"] is True
    assert data["checks"]["configuration"]["profile"] == "default"
    assert data["checks"]["work_queue"]["pending"] == 0


def test_readyz_reports_store_down(client, store, monkeypatch):
    async def _down():
        return False

    monkeypatch.setattr(store, "ping", _down)

    data = client.get("/readyz").json()

    assert data["overall_ok"] is False
    assert data["checks"]["store"]["ok"] is False


def test_candidate_is_evaluated_and_enqueued(client):
    response = _candidate(client)

    assert response.status_code == 200
    data = response.json()
    assert data["decision"]["should_schedule"] is True
    assert data["notification"]["status"] == "pending"
    assert data["notification"]["item_id"] == "PROJ-1"


def test_candidate_without_enqueue(client):
    data = _candidate(client, enqueue=False).json()

    assert data["decision"]["should_schedule"] is True
    assert data["notification"] is None


def test_unknown_item_is_404(client):
    assert _candidate(client, item_id="PROJ-404").status_code == 404


def test_source_outage_is_503(client, source):
    source.available = False

    assert _candidate(client).status_code == 503


def test_invalid_candidate_body_is_422(client):
    assert _candidate(client, notification_type="carrier-pigeon").status_code == 422


def test_enqueue_endpoint_is_idempotent(client):
    decision = _candidate(client, enqueue=False).json()["decision"]

    first = client.post("/reminders/enqueue", json={"decision": decision})
    second = client.post("/reminders/enqueue", json={"decision": decision})

    assert first.status_code == 200
    assert first.json()["id"] == second.json()["id"]


def test_enqueue_vetoed_decision_is_409(client):
    decision = _candidate(client, enqueue=False).json()["decision"]
    decision["should_schedule"] = False

    assert client.post("/reminders/enqueue", json={"decision": decision}).status_code == 409


def test_cap_exhaustion_is_429(client, config):
    config.scheduling.global_limits.max_per_hour = 1
    first = _candidate(client, enqueue=False).json()["decision"]
    second = _candidate(client, item_id="PROJ-2", enqueue=False).json()["decision"]

    assert client.post("/reminders/enqueue", json={"decision": first}).status_code == 200
    response = client.post("/reminders/enqueue", json={"decision": second})

    assert response.status_code == 429
    assert "X-RateLimit-Reset" in response.headers


def test_queue_snapshot(client):
    _candidate(client)
    _candidate(client, item_id="PROJ-2", notification_type="deadline-warning")

    data = client.get("/reminders/queues/user-1").json()

    assert data["size"] == 2
    assert data["next_processing_time"] is not None
    assert {e["notification"]["item_id"] for e in data["entries"]} == {"PROJ-1", "PROJ-2"}


def test_cancel_notification(client):
    notification_id = _candidate(client).json()["notification"]["id"]

    first = client.delete(f"/reminders/notifications/{notification_id}")
    second = client.delete(f"/reminders/notifications/{notification_id}")

    assert first.json() == {"notification_id": notification_id, "cancelled": True}
    assert second.json()["cancelled"] is False
    assert client.get("/reminders/queues/user-1").json()["size"] == 0


def test_tick_delivers_due_notifications(client, clock, channel):
    _candidate(client)

    assert client.post("/reminders/tick").json() == {"processed": 0, "pending_work": 0}

    clock.set(THURSDAY_MORNING)
    assert client.post("/reminders/tick").json() == {"processed": 1, "pending_work": 0}
    assert len(channel.deliveries) == 1


def test_preferences_update(client):
    response = client.put(
        "/reminders/users/user-1/preferences",
        json={"timezone": "Europe/Berlin", "quiet_hours": {"start": "20:00", "end": "07:30"}},
    )

    assert response.status_code == 200
    assert response.json()["timezone"] == "Europe/Berlin"
    assert response.json()["user_id"] == "user-1"


def test_preferences_reject_unknown_timezone(client):
    response = client.put("/reminders/users/user-1/preferences", json={"timezone": "Mars/Olympus"})

    assert response.status_code == 422


def test_record_response_and_optimize(client, clock):
    notification_id = _candidate(client).json()["notification"]["id"]
    clock.set(THURSDAY_MORNING)
    client.post("/reminders/tick")

    recorded = client.post(
        "/reminders/responses",
        json={"user_id": "user-1", "notification_id": notification_id, "response_type": "actioned"},
    )
    optimized = client.post("/reminders/users/user-1/optimize")

    assert recorded.status_code == 200
    assert recorded.json()["hour_of_day"] == 9
    assert optimized.json() == {
        "user_id": "user-1",
        "sample_size": 1,
        "adjustments": [],
        "learned_window": None,
    }


def test_batch_groups_endpoint(client):
    _candidate(client)

    data = client.get("/reminders/queues/user-1/batches").json()

    assert data == {"user_id": "user-1", "groups": {}}
