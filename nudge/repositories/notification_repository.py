"""
Persistence layer for the reminder engine.

Provides typed access over the key-value store so the engine, orchestrator and
jobs never deal with keys or JSON directly.

Read policy:
- Queues, notifications and pipeline runs are critical: a StoreError propagates.
- Workload, preferences, response history, learned windows and the sent log are
  non-critical: a failed read is logged and the default is returned. The sent
  log is read critically when it is about to be rewritten.
Every write propagates StoreError.
"""

import json
from contextlib import AbstractAsyncContextManager
from typing import TypeVar

from pydantic import BaseModel, TypeAdapter

from nudge.errors import StoreError
from nudge.features.scheduling.rate_limiter import Reservation
from nudge.infrastructure.observability.logging import get_logger
from nudge.models.domain.notification_domain import (
    NotificationQueue,
    PipelineRun,
    ScheduledNotification,
)
from nudge.models.domain.user_domain import (
    LearnedWindow,
    UserPreferences,
    UserResponse,
    UserWorkloadProfile,
)
from nudge.services.store import base as keys
from nudge.services.store.base import PersistentStore

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

_responses = TypeAdapter(list[UserResponse])
_reservations = TypeAdapter(list[Reservation])


class NotificationRepository:
    """Typed persistence helpers backed by a PersistentStore."""

    RESPONSE_HISTORY_LIMIT = 200

    def __init__(self, store: PersistentStore):
        self.store = store

    # =================================================================
    # Generic helpers
    # =================================================================

    async def _load(self, key: str, model: type[M]) -> M | None:
        raw = await self.store.get(key)
        if raw is None:
            return None
        return model.model_validate_json(raw)

    async def _load_or_default(self, key: str, model: type[M], default: M | None) -> M | None:
        try:
            return await self._load(key, model)
        except StoreError as e:
            logger.warning("Non-critical read failed, using default", key=key, error=e.message)
            return default

    async def _save(self, key: str, value: BaseModel) -> None:
        await self.store.set(key, value.model_dump_json())

    async def _load_ids(self, key: str) -> list[str]:
        raw = await self.store.get(key)
        return json.loads(raw) if raw else []

    # =================================================================
    # Notifications and queues
    # =================================================================

    async def get_notification(self, notification_id: str) -> ScheduledNotification | None:
        return await self._load(keys.notification_key(notification_id), ScheduledNotification)

    async def save_notification(self, notification: ScheduledNotification) -> None:
        await self._save(keys.notification_key(notification.id), notification)

    async def get_queue(self, user_id: str) -> NotificationQueue:
        queue = await self._load(keys.queue_key(user_id), NotificationQueue)
        return queue or NotificationQueue(user_id=user_id)

    async def save_queue(self, queue: NotificationQueue) -> None:
        """Persist the queue and every notification it holds."""
        for entry in queue.entries:
            await self.save_notification(entry.notification)
        await self._save(keys.queue_key(queue.user_id), queue)

    # =================================================================
    # Per-user state
    # =================================================================

    async def get_workload(self, user_id: str) -> UserWorkloadProfile | None:
        return await self._load_or_default(keys.workload_key(user_id), UserWorkloadProfile, None)

    async def save_workload(self, profile: UserWorkloadProfile) -> None:
        await self._save(keys.workload_key(profile.user_id), profile)

    async def get_preferences(self, user_id: str) -> UserPreferences:
        default = UserPreferences(user_id=user_id)
        return await self._load_or_default(keys.preferences_key(user_id), UserPreferences, default) or default

    async def save_preferences(self, preferences: UserPreferences) -> None:
        await self._save(keys.preferences_key(preferences.user_id), preferences)

    async def get_responses(self, user_id: str) -> list[UserResponse]:
        try:
            raw = await self.store.get(keys.responses_key(user_id))
        except StoreError as e:
            logger.warning("Response history read failed", user_id=user_id, error=e.message)
            return []
        return _responses.validate_json(raw) if raw else []

    async def append_response(self, user_id: str, response: UserResponse) -> list[UserResponse]:
        """Add a response and keep only the most recent ``RESPONSE_HISTORY_LIMIT`` entries."""
        history = await self.get_responses(user_id)
        history.append(response)
        history = history[-self.RESPONSE_HISTORY_LIMIT :]
        await self.store.set(keys.responses_key(user_id), _responses.dump_json(history).decode())
        return history

    async def get_learned_window(self, user_id: str) -> LearnedWindow | None:
        return await self._load_or_default(keys.learned_window_key(user_id), LearnedWindow, None)

    async def save_learned_window(self, user_id: str, window: LearnedWindow) -> None:
        await self._save(keys.learned_window_key(user_id), window)

    async def get_sent_log(self, user_id: str, critical: bool = False) -> list[Reservation]:
        """
        Reservations counted against the user's caps.

        Pass ``critical=True`` before rewriting the log: a failed read must not
        be mistaken for an empty log.
        """
        try:
            raw = await self.store.get(keys.sent_log_key(user_id))
        except StoreError as e:
            if critical:
                raise
            logger.warning("Sent log read failed", user_id=user_id, error=e.message)
            return []
        return _reservations.validate_json(raw) if raw else []

    async def save_sent_log(self, user_id: str, reservations: list[Reservation]) -> None:
        await self.store.set(keys.sent_log_key(user_id), _reservations.dump_json(reservations).decode())

    def user_lock(self, user_id: str) -> AbstractAsyncContextManager[None]:
        """Single writer for one user's queue and sent log, across worker processes."""
        return self.store.lock(keys.user_lock_key(user_id))

    # =================================================================
    # Pipeline runs and the global work queue
    # =================================================================

    async def get_run(self, run_id: str) -> PipelineRun | None:
        return await self._load(keys.pipeline_key(run_id), PipelineRun)

    async def save_run(self, run: PipelineRun) -> None:
        await self._save(keys.pipeline_key(run.id), run)

    async def push_work(self, run_ids: list[str]) -> None:
        if not run_ids:
            return
        pending = await self._load_ids(keys.WORK_QUEUE_KEY)
        pending.extend(run_id for run_id in run_ids if run_id not in pending)
        await self.store.set(keys.WORK_QUEUE_KEY, json.dumps(pending))

    async def pop_work(self, max_count: int) -> list[str]:
        pending = await self._load_ids(keys.WORK_QUEUE_KEY)
        taken, rest = pending[:max_count], pending[max_count:]
        if taken:
            await self.store.set(keys.WORK_QUEUE_KEY, json.dumps(rest))
        return taken

    async def pending_work(self) -> list[str]:
        return await self._load_ids(keys.WORK_QUEUE_KEY)

    async def register_user(self, user_id: str) -> None:
        users = await self._load_ids(keys.USER_INDEX_KEY)
        if user_id not in users:
            users.append(user_id)
            await self.store.set(keys.USER_INDEX_KEY, json.dumps(users))

    async def list_users(self) -> list[str]:
        return await self._load_ids(keys.USER_INDEX_KEY)
