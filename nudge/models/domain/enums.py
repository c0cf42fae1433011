"""
Canonical tagged variants shared by every component.

Ordered levels compare by declaration position, never by string value.
"""

from enum import Enum


class OrderedStrEnum(str, Enum):
    """String enum whose comparisons follow member declaration order."""

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    def _check(self, other) -> int:
        if type(other) is not type(self):
            return NotImplemented
        return other.rank

    def __lt__(self, other):
        rank = self._check(other)
        return rank if rank is NotImplemented else self.rank < rank

    def __le__(self, other):
        rank = self._check(other)
        return rank if rank is NotImplemented else self.rank <= rank

    def __gt__(self, other):
        rank = self._check(other)
        return rank if rank is NotImplemented else self.rank > rank

    def __ge__(self, other):
        rank = self._check(other)
        return rank if rank is NotImplemented else self.rank >= rank

    @classmethod
    def max_rank(cls) -> int:
        return len(cls) - 1


class StalenessLevel(OrderedStrEnum):
    FRESH = "fresh"
    AGING = "aging"
    STALE = "stale"
    VERY_STALE = "very_stale"
    ABANDONED = "abandoned"


class UrgencyLevel(OrderedStrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CapacityLevel(OrderedStrEnum):
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    OVERLOADED = "overloaded"


class Priority(OrderedStrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationType(str, Enum):
    STALE_REMINDER = "stale-reminder"
    DEADLINE_WARNING = "deadline-warning"
    PROGRESS_UPDATE = "progress-update"
    TEAM_ENCOURAGEMENT = "team-encouragement"
    ACHIEVEMENT_RECOGNITION = "achievement-recognition"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    DELIVERED = "delivered"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {NotificationStatus.DELIVERED, NotificationStatus.EXPIRED, NotificationStatus.CANCELLED}
)


class PipelineStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_finished(self) -> bool:
        return self in (PipelineStatus.COMPLETED, PipelineStatus.FAILED)


class PipelineStage(str, Enum):
    ANALYSIS = "analysis"
    SCHEDULING = "scheduling"
    CONTENT_GENERATION = "content_generation"
    CONTENT_VALIDATION = "content_validation"
    DELIVERY = "delivery"


class ResponseType(str, Enum):
    DISMISSED = "dismissed"
    ACKNOWLEDGED = "acknowledged"
    ACTIONED = "actioned"
    IGNORED = "ignored"


class AdjustmentImpact(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SIGNIFICANT = "significant"


class QuietHoursPolicy(str, Enum):
    VETO = "veto"
    DEFER = "defer"
