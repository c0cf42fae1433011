from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from nudge.errors import StoreError
from nudge.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RedisStore:
    """Redis-backed key-value store with connection pooling."""

    def __init__(self, redis_url: str, timeout_s: float = 5.0, max_connections: int = 20):
        self.redis_url = redis_url
        self.timeout_s = timeout_s
        self.max_connections = max_connections
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=self.redis_url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                self.redis_url,
                max_connections=self.max_connections,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=self.timeout_s,
                socket_timeout=self.timeout_s,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Redis store initialized", max_connections=self.max_connections)

        except redis.RedisError as e:
            logger.error("Failed to initialize Redis store", error=str(e))
            self._initialized = False
            raise StoreError("Redis initialization failed", operation="initialize") from e

    async def close(self) -> None:
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis store closed")
        except redis.RedisError as e:
            logger.error("Error closing Redis store", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except (StoreError, redis.RedisError) as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        try:
            await self._ensure_initialized()
            result = await self.client.get(key)
            return result if result else None
        except redis.RedisError as e:
            logger.error("Redis GET failed", key=key[:30], error=str(e))
            raise StoreError(f"GET failed: {e}", key=key, operation="get") from e

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> None:
        try:
            await self._ensure_initialized()
            if ttl_s:
                await self.client.setex(key, ttl_s, value)
            else:
                await self.client.set(key, value)
        except redis.RedisError as e:
            logger.error("Redis SET failed", key=key[:30], error=str(e))
            raise StoreError(f"SET failed: {e}", key=key, operation="set") from e

    async def delete(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.delete(key)
            return result > 0
        except redis.RedisError as e:
            logger.error("Redis DELETE failed", key=key[:30], error=str(e))
            raise StoreError(f"DELETE failed: {e}", key=key, operation="delete") from e

    @asynccontextmanager
    async def lock(self, key: str, timeout_s: float = 10.0) -> AsyncIterator[None]:
        """
        Cross-process lease on ``key`` via redis-py's Lock (token + Lua release).

        The lease expires after ``timeout_s`` so a crashed holder cannot block
        other workers forever.
        """
        try:
            await self._ensure_initialized()
            lease = self.client.lock(f"lock:{key}", timeout=timeout_s, blocking_timeout=timeout_s)
            acquired = await lease.acquire()
        except redis.RedisError as e:
            logger.error("Redis LOCK failed", key=key[:30], error=str(e))
            raise StoreError(f"LOCK failed: {e}", key=key, operation="lock") from e
        if not acquired:
            raise StoreError(f"LOCK timed out after {timeout_s}s", key=key, operation="lock")

        try:
            yield
        finally:
            try:
                await lease.release()
            except redis.RedisError as e:
                # Lease already expired; the next holder is unaffected
                logger.warning("Redis lock release failed", key=key[:30], error=str(e))
