"""
Key-value persistence contract.

Values are JSON strings. Implementations raise StoreError on I/O failure;
callers decide whether a failed read falls back to a default.

``lock(key)`` is an exclusive lease shared by every process on the same
backend; it is not reentrant.
"""

from contextlib import AbstractAsyncContextManager
from typing import Protocol, runtime_checkable


@runtime_checkable
class PersistentStore(Protocol):
    async def ping(self) -> bool: ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> None: ...

    async def delete(self, key: str) -> bool: ...

    def lock(self, key: str, timeout_s: float = 10.0) -> AbstractAsyncContextManager[None]: ...

    async def close(self) -> None: ...


# Deterministic composite keys
def notification_key(notification_id: str) -> str:
    return f"notification:{notification_id}"


def queue_key(user_id: str) -> str:
    return f"user:{user_id}:queue"


def workload_key(user_id: str) -> str:
    return f"user:{user_id}:workload"


def preferences_key(user_id: str) -> str:
    return f"user:{user_id}:preferences"


def responses_key(user_id: str) -> str:
    return f"user:{user_id}:responses"


def learned_window_key(user_id: str) -> str:
    return f"user:{user_id}:learned_window"


def sent_log_key(user_id: str) -> str:
    return f"user:{user_id}:sent_log"


def user_lock_key(user_id: str) -> str:
    return f"user:{user_id}:lock"


def pipeline_key(run_id: str) -> str:
    return f"pipeline:{run_id}"


def audit_key(user_id: str) -> str:
    return f"audit:{user_id}"


WORK_QUEUE_KEY = "pipeline:work_queue"
USER_INDEX_KEY = "index:users"
