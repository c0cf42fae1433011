from nudge.services.store.base import PersistentStore
from nudge.services.store.memory import InMemoryStore
from nudge.services.store.redis_store import RedisStore


def build_store(backend: str, redis_url: str | None = None, timeout_s: float = 5.0) -> PersistentStore:
    """Create the configured store backend ("memory" or "redis")."""
    if backend == "memory":
        return InMemoryStore()
    if backend == "redis":
        if not redis_url:
            raise ValueError("redis_url is required for the redis store backend")
        return RedisStore(redis_url, timeout_s=timeout_s)
    raise ValueError(f"Unknown store backend: {backend}")


__all__ = ["PersistentStore", "InMemoryStore", "RedisStore", "build_store"]
