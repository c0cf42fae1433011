import asyncio
import gc
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError
from redis.exceptions import TimeoutError as RedisTimeoutError

from nudge.errors import StoreError
from nudge.services.store import InMemoryStore, RedisStore, build_store


@pytest.fixture
def redis_store():
    store = RedisStore("redis://localhost:6379/0")
    store.client = AsyncMock()
    store._initialized = True
    return store


@pytest.mark.asyncio
async def test_memory_store_set_get_delete():
    store = InMemoryStore()

    await store.set("user:1:queue", "{}")

    assert await store.get("user:1:queue") == "{}"
    assert await store.delete("user:1:queue") is True
    assert await store.delete("user:1:queue") is False
    assert await store.get("user:1:queue") is None


@pytest.mark.asyncio
async def test_memory_store_expires_keys():
    store = InMemoryStore()
    await store.set("pipeline:run_1", "{}", ttl_s=60)
    store._expiry["pipeline:run_1"] = datetime.now(UTC) - timedelta(seconds=1)

    assert await store.get("pipeline:run_1") is None
    assert store.keys() == []


@pytest.mark.asyncio
async def test_memory_store_overwrite_clears_ttl():
    store = InMemoryStore()
    await store.set("k", "1", ttl_s=60)
    await store.set("k", "2")

    assert "k" not in store._expiry
    assert await store.get("k") == "2"


@pytest.mark.asyncio
async def test_redis_get_wraps_connection_errors(redis_store):
    redis_store.client.get.side_effect = RedisConnectionError("connection refused")

    with pytest.raises(StoreError) as exc_info:
        await redis_store.get("user:1:queue")

    assert exc_info.value.operation == "get"
    assert exc_info.value.key == "user:1:queue"


@pytest.mark.asyncio
async def test_redis_set_uses_setex_for_ttl(redis_store):
    await redis_store.set("pipeline:run_1", "{}", ttl_s=30)
    await redis_store.set("user:1:queue", "{}")

    redis_store.client.setex.assert_awaited_once_with("pipeline:run_1", 30, "{}")
    redis_store.client.set.assert_awaited_once_with("user:1:queue", "{}")


@pytest.mark.asyncio
async def test_redis_set_failure_raises_store_error(redis_store):
    redis_store.client.set.side_effect = RedisTimeoutError("timed out")

    with pytest.raises(StoreError):
        await redis_store.set("user:1:queue", "{}")


@pytest.mark.asyncio
async def test_redis_ping_reports_false_on_error(redis_store):
    redis_store.client.ping.side_effect = RedisTimeoutError("timed out")

    assert await redis_store.ping() is False


@pytest.mark.asyncio
async def test_redis_delete_reports_removed(redis_store):
    redis_store.client.delete.return_value = 1

    assert await redis_store.delete("k") is True


def test_build_store_backends():
    assert isinstance(build_store("memory"), InMemoryStore)
    assert isinstance(build_store("redis", "redis://localhost:6379/0"), RedisStore)

    with pytest.raises(ValueError):
        build_store("redis")
    with pytest.raises(ValueError):
        build_store("sqlite")


@pytest.mark.asyncio
async def test_memory_lock_excludes_other_holders():
    store = InMemoryStore()
    events = []

    async def _hold(name):
        async with store.lock("user:1:lock"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(_hold("a"), _hold("b"))

    assert events == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_memory_lock_times_out():
    store = InMemoryStore()

    async with store.lock("user:1:lock"):
        with pytest.raises(StoreError) as exc_info:
            async with store.lock("user:1:lock", timeout_s=0.01):
                pass

    assert exc_info.value.operation == "lock"
    assert exc_info.value.key == "user:1:lock"


@pytest.mark.asyncio
async def test_memory_lock_entries_are_dropped_after_release():
    store = InMemoryStore()

    for i in range(50):
        async with store.lock(f"user:{i}:lock"):
            assert store.held_locks() >= 1

    gc.collect()
    assert store.held_locks() == 0


def _lease(acquired=True):
    lease = MagicMock()
    lease.acquire = AsyncMock(return_value=acquired)
    lease.release = AsyncMock()
    return lease


@pytest.mark.asyncio
async def test_redis_lock_acquires_and_releases(redis_store):
    lease = _lease()
    redis_store.client.lock = MagicMock(return_value=lease)

    async with redis_store.lock("user:1:lock", timeout_s=5):
        lease.release.assert_not_awaited()

    redis_store.client.lock.assert_called_once_with("lock:user:1:lock", timeout=5, blocking_timeout=5)
    lease.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_lock_not_acquired_raises_store_error(redis_store):
    redis_store.client.lock = MagicMock(return_value=_lease(acquired=False))

    with pytest.raises(StoreError) as exc_info:
        async with redis_store.lock("user:1:lock", timeout_s=1):
            pass

    assert "timed out" in exc_info.value.message


@pytest.mark.asyncio
async def test_redis_lock_connection_error_raises_store_error(redis_store):
    lease = _lease()
    lease.acquire.side_effect = RedisConnectionError("connection refused")
    redis_store.client.lock = MagicMock(return_value=lease)

    with pytest.raises(StoreError) as exc_info:
        async with redis_store.lock("user:1:lock"):
            pass

    assert exc_info.value.operation == "lock"


@pytest.mark.asyncio
async def test_redis_lock_expired_release_is_not_raised(redis_store):
    lease = _lease()
    lease.release.side_effect = LockError("Cannot release a lock that's no longer owned")
    redis_store.client.lock = MagicMock(return_value=lease)

    async with redis_store.lock("user:1:lock"):
        pass

    lease.release.assert_awaited_once()
