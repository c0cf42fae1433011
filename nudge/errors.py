"""
Error taxonomy for the reminder engine.

Scheduling vetoes are not errors; they come back as normal decisions with a
reasoning trail. These exceptions cover bad data, bad configuration and
collaborator failures.
"""

from datetime import datetime


class NudgeError(Exception):
    """Base exception for reminder engine errors."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class AnalysisError(NudgeError):
    """Raised when a work item is missing data an analyzer needs."""

    def __init__(self, message: str, item_id: str | None = None, field: str | None = None):
        super().__init__(message, recoverable=False)
        self.item_id = item_id
        self.field = field


class SchedulingError(NudgeError):
    """Raised for invalid scheduling configuration or an enqueue that cannot proceed."""

    def __init__(self, message: str, errors: list[str] | None = None, recoverable: bool = False):
        super().__init__(message, recoverable=recoverable)
        self.errors = errors or []


class RateLimitExceeded(SchedulingError):
    """Raised when the atomic cap reservation fails at enqueue time."""

    def __init__(self, message: str, used: int, limit: int, window: str, reset_time: datetime):
        super().__init__(message, recoverable=True)
        self.used = used
        self.limit = limit
        self.window = window
        self.reset_time = reset_time


class ValidationError(NudgeError):
    """Raised when content is judged unacceptable after repair and the policy blocks it."""

    def __init__(self, message: str, score: float | None = None):
        super().__init__(message)
        self.score = score


class DeliveryError(NudgeError):
    """Raised when the delivery channel reports a failure."""

    def __init__(self, message: str, notification_id: str | None = None):
        super().__init__(message)
        self.notification_id = notification_id


class StoreError(NudgeError):
    """Raised for persistence I/O failures."""

    def __init__(self, message: str, key: str | None = None, operation: str | None = None):
        super().__init__(message)
        self.key = key
        self.operation = operation


class WorkItemSourceError(NudgeError):
    """Transient failure talking to the work-item source."""

    def __init__(self, message: str, item_id: str | None = None):
        super().__init__(message, recoverable=True)
        self.item_id = item_id


class WorkItemNotFound(WorkItemSourceError):
    """The work-item source has no item with the requested id."""

    def __init__(self, item_id: str):
        super().__init__(f"Work item not found: {item_id}", item_id=item_id)
        self.recoverable = False


class PipelineStageError(NudgeError):
    """A pipeline stage raised, reported failure, or timed out."""

    def __init__(self, message: str, stage: str, timed_out: bool = False):
        super().__init__(message)
        self.stage = stage
        self.timed_out = timed_out
