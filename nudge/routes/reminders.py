"""
Reminder API Routes
HTTP endpoints for candidate evaluation, queue management, the driver tick
and adaptive response history.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError

from nudge.errors import (
    AnalysisError,
    NudgeError,
    RateLimitExceeded,
    SchedulingError,
    StoreError,
    WorkItemNotFound,
    WorkItemSourceError,
)
from nudge.infrastructure.observability.logging import get_logger
from nudge.models.api.reminder_request import (
    CandidateRequest,
    EnqueueRequest,
    PreferencesRequest,
    TickRequest,
    UserResponseRequest,
)
from nudge.models.api.reminder_response import (
    CancelResponse,
    CandidateResponse,
    NotificationResponse,
    OptimizeResponse,
    QueueResponse,
    TickResponse,
    UserResponseRecorded,
)
from nudge.models.domain.user_domain import UserPreferences
from nudge.services.reminder_service import ReminderService

logger = get_logger(__name__)

router = APIRouter(prefix="/reminders", tags=["reminders"])


def get_reminder_service(request: Request) -> ReminderService:
    return request.app.state.reminder_service


def _http_error(e: NudgeError) -> HTTPException:
    """Map engine errors to HTTP status codes."""
    if isinstance(e, WorkItemNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    if isinstance(e, (WorkItemSourceError, StoreError)):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    if isinstance(e, AnalysisError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    if isinstance(e, RateLimitExceeded):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=e.message,
            headers={"X-RateLimit-Reset": e.reset_time.isoformat()},
        )
    if isinstance(e, SchedulingError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Reminder engine error")


@router.post("/candidates", response_model=CandidateResponse)
async def evaluate_candidate(
    body: CandidateRequest, service: ReminderService = Depends(get_reminder_service)
):
    """Evaluate one work item for one user; optionally enqueue when accepted."""
    try:
        decision = await service.evaluate_candidate(
            body.user_id, body.item_id, body.notification_type, body.priority, body.activity
        )
        notification = None
        if body.enqueue and decision.should_schedule:
            notification = await service.enqueue(decision)

    except NudgeError as e:
        logger.warning("Candidate evaluation failed", user_id=body.user_id, item_id=body.item_id, error=e.message)
        raise _http_error(e) from e

    return CandidateResponse(
        decision=decision,
        notification=NotificationResponse.from_domain(notification) if notification else None,
    )


@router.post("/enqueue", response_model=NotificationResponse)
async def enqueue_decision(body: EnqueueRequest, service: ReminderService = Depends(get_reminder_service)):
    """Enqueue an accepted decision; enqueuing the same item and type twice is idempotent."""
    try:
        notification = await service.enqueue(body.decision)
    except NudgeError as e:
        logger.warning("Enqueue failed", user_id=body.decision.user_id, error=e.message)
        raise _http_error(e) from e

    return NotificationResponse.from_domain(notification)


@router.get("/queues/{user_id}", response_model=QueueResponse)
async def get_queue(user_id: str, service: ReminderService = Depends(get_reminder_service)):
    try:
        queue = await service.get_queue_snapshot(user_id)
    except NudgeError as e:
        logger.error("Error reading queue", user_id=user_id, error=e.message)
        raise _http_error(e) from e

    return QueueResponse.from_domain(queue)


@router.delete("/notifications/{notification_id}", response_model=CancelResponse)
async def cancel_notification(notification_id: str, service: ReminderService = Depends(get_reminder_service)):
    """Cancel a pending notification. Unknown or finished notifications return cancelled=false."""
    try:
        cancelled = await service.cancel(notification_id, reason="cancelled via API")
    except NudgeError as e:
        logger.error("Error cancelling notification", notification_id=notification_id, error=e.message)
        raise _http_error(e) from e

    return CancelResponse(notification_id=notification_id, cancelled=cancelled)


@router.post("/tick", response_model=TickResponse)
async def run_tick(body: TickRequest | None = None, service: ReminderService = Depends(get_reminder_service)):
    """Run one driver step on demand."""
    try:
        processed = await service.tick(body.now if body else None)
        pending = await service.repository.pending_work()
    except NudgeError as e:
        logger.error("Tick failed", error=e.message)
        raise _http_error(e) from e

    return TickResponse(processed=processed, pending_work=len(pending))


@router.post("/responses", response_model=UserResponseRecorded)
async def record_response(body: UserResponseRequest, service: ReminderService = Depends(get_reminder_service)):
    try:
        response = await service.record_user_response(
            body.user_id, body.notification_id, body.response_type, body.responded_at
        )
    except NudgeError as e:
        logger.error("Error recording response", user_id=body.user_id, error=e.message)
        raise _http_error(e) from e

    return UserResponseRecorded(
        notification_id=response.notification_id,
        response_type=response.response_type.value,
        hour_of_day=response.hour_of_day,
        day_of_week=response.day_of_week,
    )


@router.post("/users/{user_id}/optimize", response_model=OptimizeResponse)
async def optimize_schedule(user_id: str, service: ReminderService = Depends(get_reminder_service)):
    """Advisory schedule adjustments from the user's response history."""
    try:
        result = await service.optimize_schedule(user_id)
    except NudgeError as e:
        logger.error("Error optimizing schedule", user_id=user_id, error=e.message)
        raise _http_error(e) from e

    return OptimizeResponse(
        user_id=user_id,
        sample_size=result.sample_size,
        adjustments=result.adjustments,
        learned_window=result.learned_window,
    )


@router.put("/users/{user_id}/preferences", response_model=UserPreferences)
async def update_preferences(
    user_id: str, body: PreferencesRequest, service: ReminderService = Depends(get_reminder_service)
):
    try:
        preferences = body.to_domain(user_id)
    except PydanticValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    try:
        return await service.update_preferences(preferences)
    except NudgeError as e:
        logger.error("Error saving preferences", user_id=user_id, error=e.message)
        raise _http_error(e) from e


@router.get("/queues/{user_id}/batches")
async def get_batch_groups(user_id: str, service: ReminderService = Depends(get_reminder_service)):
    """Ready batchable notifications grouped by batch key (merging is up to the caller)."""
    try:
        groups = await service.batch_groups(user_id)
    except NudgeError as e:
        logger.error("Error reading batch groups", user_id=user_id, error=e.message)
        raise _http_error(e) from e

    return {
        "user_id": user_id,
        "groups": {key: [entry.notification.id for entry in entries] for key, entries in groups.items()},
    }
