import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

from nudge.errors import StoreError
from nudge.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class InMemoryStore:
    """Process-local store used for development and tests."""

    def __init__(self):
        self._data: dict[str, str] = {}
        self._expiry: dict[str, datetime] = {}
        self._lock = asyncio.Lock()
        # Entries disappear once no holder or waiter references the lock
        self._key_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _expired(self, key: str) -> bool:
        expires_at = self._expiry.get(key)
        if expires_at is not None and expires_at <= datetime.now(UTC):
            self._data.pop(key, None)
            self._expiry.pop(key, None)
            return True
        return False

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        async with self._lock:
            if self._expired(key):
                return None
            return self._data.get(key)

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> None:
        async with self._lock:
            self._data[key] = value
            if ttl_s:
                self._expiry[key] = datetime.now(UTC) + timedelta(seconds=ttl_s)
            else:
                self._expiry.pop(key, None)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            self._expiry.pop(key, None)
            return self._data.pop(key, None) is not None

    @asynccontextmanager
    async def lock(self, key: str, timeout_s: float = 10.0) -> AsyncIterator[None]:
        key_lock = self._key_locks.get(key)
        if key_lock is None:
            key_lock = asyncio.Lock()
            self._key_locks[key] = key_lock

        try:
            await asyncio.wait_for(key_lock.acquire(), timeout=timeout_s)
        except TimeoutError as e:
            raise StoreError(f"LOCK timed out after {timeout_s}s", key=key, operation="lock") from e

        try:
            yield
        finally:
            key_lock.release()

    def held_locks(self) -> int:
        return len(self._key_locks)

    async def close(self) -> None:
        logger.debug("In-memory store closed", keys=len(self._data))

    def keys(self) -> list[str]:
        return sorted(self._data)
