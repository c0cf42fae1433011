"""
In-memory work-item source.

Backs the sweep job and tests. A tracker-backed source implements the same
WorkItemSource protocol; the engine never sees the transport.
"""

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from nudge.errors import WorkItemNotFound, WorkItemSourceError
from nudge.infrastructure.observability.logging import get_logger
from nudge.models.domain.work_item import WorkItemSnapshot, as_utc

logger = get_logger(__name__)

DONE_STATUSES = frozenset({"done", "closed", "resolved"})


class InMemoryWorkItemSource:
    def __init__(
        self,
        items: Iterable[WorkItemSnapshot] = (),
        clock: Callable[[], datetime] | None = None,
    ):
        self._items: dict[str, WorkItemSnapshot] = {item.id: item for item in items}
        self._clock = clock or (lambda: datetime.now(UTC))
        self.available = True

    def put(self, item: WorkItemSnapshot) -> None:
        self._items[item.id] = item

    def remove(self, item_id: str) -> None:
        self._items.pop(item_id, None)

    def _check_available(self, operation: str) -> None:
        if not self.available:
            logger.warning("Work item source unavailable", operation=operation)
            raise WorkItemSourceError(f"Work item source unavailable during {operation}")

    async def get_item(self, item_id: str) -> WorkItemSnapshot:
        self._check_available("get_item")
        item = self._items.get(item_id)
        if item is None:
            raise WorkItemNotFound(item_id)
        return item

    async def query_stale(self, threshold_days: float, filters: dict | None = None) -> list[WorkItemSnapshot]:
        """Open items not updated for at least ``threshold_days``."""
        self._check_available("query_stale")
        cutoff = self._clock() - timedelta(days=threshold_days)
        return [
            item
            for item in self._open_items(filters)
            if item.updated is not None and as_utc(item.updated) <= cutoff
        ]

    async def query_near_deadline(
        self, days_ahead: float, filters: dict | None = None
    ) -> list[WorkItemSnapshot]:
        """Open items due within ``days_ahead``, overdue ones included."""
        self._check_available("query_near_deadline")
        horizon = self._clock() + timedelta(days=days_ahead)
        return [
            item
            for item in self._open_items(filters)
            if item.due_date is not None and as_utc(item.due_date) <= horizon
        ]

    async def get_assigned_items(self, user_id: str) -> list[WorkItemSnapshot]:
        self._check_available("get_assigned_items")
        return [item for item in self._items.values() if item.assignee_id == user_id]

    def _open_items(self, filters: dict | None) -> list[WorkItemSnapshot]:
        filters = filters or {}
        items = []
        for item in self._items.values():
            if item.status.lower() in DONE_STATUSES:
                continue
            if any(getattr(item, field, None) != value for field, value in filters.items()):
                continue
            items.append(item)
        return sorted(items, key=lambda item: item.id)
