"""
AuditLogger - audit trail for scheduling decisions and pipeline outcomes.

Each event goes to:
1. Structured logs (stdout) - real-time monitoring
2. The store under ``audit:{user_id}`` - the most recent entries per user

Usage:
    audit = AuditLogger(store)

    await audit.log(
        user_id="user-123",
        action="decision_vetoed",
        resource_type="work_item",
        resource_id="PROJ-42",
        metadata={"reasoning": decision.reasoning},
    )

Audit logging never fails the caller: store errors are logged and swallowed.
"""

import json
from datetime import UTC, datetime
from typing import Any

from nudge.infrastructure.observability.logging import get_logger
from nudge.services.store.base import PersistentStore, audit_key

logger = get_logger(__name__)


class AuditLogger:
    MAX_ENTRIES = 200

    def __init__(self, store: PersistentStore, max_entries: int = MAX_ENTRIES):
        self.store = store
        self.max_entries = max_entries

    async def log(
        self,
        user_id: str,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Record an audit event.

        Returns:
            True if stored, False if the store write failed (never raises)
        """
        # Structured logs first (fast)
        logger.info(
            "Audit event",
            audit_action=action,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
        )

        entry = {
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "metadata": metadata or {},
            "created_at": datetime.now(UTC).isoformat(),
        }

        try:
            key = audit_key(user_id)
            raw = await self.store.get(key)
            entries = json.loads(raw) if raw else []
            entries.append(entry)
            await self.store.set(key, json.dumps(entries[-self.max_entries :], default=str))
            return True

        except Exception as e:
            # Never fail the caller because of audit storage
            logger.error(
                "Failed to write audit entry",
                error=str(e),
                error_type=type(e).__name__,
                audit_action=action,
                user_id=user_id,
                fallback_data=entry,
            )
            return False

    async def log_decision(self, decision) -> bool:
        """Convenience wrapper for a SchedulingDecision."""
        return await self.log(
            user_id=decision.user_id,
            action="decision_scheduled" if decision.should_schedule else "decision_vetoed",
            resource_type="work_item",
            resource_id=decision.item_id,
            metadata={
                "notification_type": decision.notification_type.value,
                "priority": decision.priority.value,
                "scheduled_time": decision.scheduled_time.isoformat(),
                "confidence": decision.confidence,
                "reasoning": decision.reasoning,
            },
        )

    async def log_pipeline_outcome(self, run) -> bool:
        """Convenience wrapper for a finished PipelineRun."""
        return await self.log(
            user_id=run.user_id,
            action=f"pipeline_{run.status.value}",
            resource_type="notification",
            resource_id=run.notification_id,
            metadata={
                "run_id": run.id,
                "attempt": run.attempt,
                "error": run.error,
                "error_stage": run.error_stage.value if run.error_stage else None,
                "skipped_reason": run.skipped_reason,
            },
        )

    async def recent(self, user_id: str) -> list[dict[str, Any]]:
        raw = await self.store.get(audit_key(user_id))
        return json.loads(raw) if raw else []
