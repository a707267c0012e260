"""HTTP endpoints for vaccination reminders."""
from datetime import date, datetime
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from vaccine_reminders.database import get_db
from vaccine_reminders.exceptions import (
    ReminderEngineError,
    ResourceNotFoundError,
    ConcurrencyConflictError,
    format_error_for_api
)
from vaccine_reminders.models.reminder import Priority, Reminder, ReminderStatus
from vaccine_reminders.schemas import (
    BulkCreateRequest,
    BulkCreateResponse,
    BulkItemError,
    CalendarEvent,
    CompleteRequest,
    GovernmentSyncRequest,
    NotificationResponse,
    ReminderCreate,
    ReminderResponse,
    ReminderStats,
    ReminderUpdate,
    RescheduleRequest,
    SnoozeRequest
)
from vaccine_reminders.services.government_sync import GovernmentScheduleReconciler
from vaccine_reminders.services.lifecycle import effective_status
from vaccine_reminders.services.reminder_service import ReminderService, validation_error_from


logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/reminders", tags=["reminders"])



def to_response(reminder: Reminder, now: datetime = None) -> ReminderResponse:
    """Serialize a reminder with its effective status."""
    return ReminderResponse(
        id=reminder.id,
        user_id=reminder.user_id,
        name=reminder.name,
        description=reminder.description or "",
        notes=reminder.notes or "",
        vaccine_id=reminder.vaccine_id,
        scheduled_date=reminder.scheduled_date,
        scheduled_time=reminder.scheduled_time,
        is_recurring=reminder.is_recurring,
        recurring_pattern=reminder.recurring_pattern,
        next_due_date=reminder.next_due_date,
        series_id=reminder.series_id,
        occurrence_number=reminder.occurrence_number,
        priority=reminder.priority,
        government_mandated=reminder.government_mandated,
        status=effective_status(reminder, now),
        stored_status=ReminderStatus(reminder.status),
        completed_date=reminder.completed_date,
        enable_notifications=reminder.enable_notifications,
        notification_methods=reminder.channels,
        advance_notification_days=reminder.offsets,
        time_of_day=reminder.notification_time,
        created_at=reminder.created_at,
        updated_at=reminder.updated_at
    )


def error_status(error: ReminderEngineError) -> int:
    """HTTP status code for an engine error."""
    if isinstance(error, ResourceNotFoundError):
        return 404
    if isinstance(error, ConcurrencyConflictError):
        return 409
    return 400


def register_exception_handlers(app: FastAPI) -> None:
    """Render engine errors and request validation errors as the JSON error envelope."""

    @app.exception_handler(ReminderEngineError)
    async def engine_error_handler(request: Request, exc: ReminderEngineError):
        return JSONResponse(status_code=error_status(exc), content=format_error_for_api(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        error = validation_error_from(exc.errors())
        return JSONResponse(status_code=400, content=format_error_for_api(error))


# ----------------------------------------------------------------------
# Per-user queries
# ----------------------------------------------------------------------

@router.get("/users/{user_id}", response_model=List[ReminderResponse])
def list_reminders(
    user_id: str,
    status: Optional[ReminderStatus] = Query(None),
    priority: Optional[Priority] = Query(None),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    skip: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db)
):
    """List a user's reminders, optionally filtered by effective status, priority and date range."""
    now = datetime.now()
    reminders = ReminderService(db).list_by_user(
        user_id,
        status=status,
        priority=priority,
        start_date=start,
        end_date=end,
        skip=skip,
        limit=limit,
        now=now
    )
    return [to_response(r, now) for r in reminders]


@router.get("/users/{user_id}/stats", response_model=ReminderStats)
def reminder_stats(user_id: str, db: Session = Depends(get_db)):
    return ReminderService(db).get_stats(user_id)


@router.get("/users/{user_id}/overdue", response_model=List[ReminderResponse])
def list_overdue(user_id: str, db: Session = Depends(get_db)):
    now = datetime.now()
    return [to_response(r, now) for r in ReminderService(db).get_overdue(user_id, now=now)]


@router.get("/users/{user_id}/upcoming", response_model=List[ReminderResponse])
def list_upcoming(
    user_id: str,
    within_days: int = Query(30, ge=0),
    db: Session = Depends(get_db)
):
    now = datetime.now()
    return [to_response(r, now) for r in ReminderService(db).get_upcoming(user_id, within_days, now=now)]


@router.get("/users/{user_id}/search", response_model=List[ReminderResponse])
def search_reminders(user_id: str, q: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    now = datetime.now()
    return [to_response(r, now) for r in ReminderService(db).search(user_id, q)]


@router.get("/users/{user_id}/calendar", response_model=List[CalendarEvent])
def calendar_events(
    user_id: str,
    start: date = Query(...),
    end: date = Query(...),
    db: Session = Depends(get_db)
):
    """Calendar events, including projected recurring occurrences, in [start, end]."""
    return ReminderService(db).get_calendar_events(user_id, start, end)


@router.post("/users/{user_id}/bulk", response_model=BulkCreateResponse)
def bulk_create(user_id: str, payload: BulkCreateRequest, db: Session = Depends(get_db)):
    """
    Create several reminders for a user.

    Each item is created on its own; rejected items are reported by index.
    """
    now = datetime.now()
    created, errors = ReminderService(db).bulk_create(user_id, payload.reminders, now=now)
    return BulkCreateResponse(
        results=[to_response(r, now) for r in created],
        errors=[
            BulkItemError(index=index, code=error.error_code, message=error.message, details=error.details)
            for index, error in errors
        ],
        total_processed=len(payload.reminders),
        success_count=len(created),
        error_count=len(errors)
    )


@router.post("/users/{user_id}/government-sync", response_model=List[ReminderResponse])
def government_sync(user_id: str, payload: GovernmentSyncRequest, db: Session = Depends(get_db)):
    """
    Reconcile a user's reminders with mandatory vaccination schedules.

    Returns only the reminders created by this call.
    """
    reconciler = GovernmentScheduleReconciler(ReminderService(db))
    now = datetime.now()
    created = reconciler.reconcile(user_id, payload.age_in_months, payload.schedules, now=now)
    return [to_response(r, now) for r in created]


# ----------------------------------------------------------------------
# Single reminder
# ----------------------------------------------------------------------

@router.post("", response_model=ReminderResponse, status_code=201)
@router.post("/", response_model=ReminderResponse, status_code=201, include_in_schema=False)
def create_reminder(payload: ReminderCreate, db: Session = Depends(get_db)):
    """
    Create a reminder.

    Notification settings left out fall back to the configured defaults.
    """
    reminder = ReminderService(db).create(payload)
    return to_response(reminder)


@router.get("/{reminder_id}", response_model=ReminderResponse)
def get_reminder(reminder_id: str, db: Session = Depends(get_db)):
    return to_response(ReminderService(db).get(reminder_id))


@router.patch("/{reminder_id}", response_model=ReminderResponse)
def update_reminder(reminder_id: str, payload: ReminderUpdate, db: Session = Depends(get_db)):
    """Apply a partial update; only the fields present in the body change."""
    reminder = ReminderService(db).update(reminder_id, payload)
    return to_response(reminder)


@router.delete("/{reminder_id}")
def delete_reminder(reminder_id: str, db: Session = Depends(get_db)):
    ReminderService(db).delete(reminder_id)
    return JSONResponse(content={"success": True, "id": reminder_id})


@router.post("/{reminder_id}/complete", response_model=ReminderResponse)
def complete_reminder(
    reminder_id: str,
    payload: Optional[CompleteRequest] = None,
    db: Session = Depends(get_db)
):
    """Mark a reminder completed; recurring reminders get their next occurrence."""
    completed_date = payload.completed_date if payload else None
    reminder = ReminderService(db).mark_completed(reminder_id, completed_date)
    return to_response(reminder)


@router.post("/{reminder_id}/cancel", response_model=ReminderResponse)
def cancel_reminder(reminder_id: str, db: Session = Depends(get_db)):
    return to_response(ReminderService(db).cancel(reminder_id))


@router.post("/{reminder_id}/snooze", response_model=ReminderResponse)
def snooze_reminder(
    reminder_id: str,
    payload: Optional[SnoozeRequest] = None,
    db: Session = Depends(get_db)
):
    request = payload or SnoozeRequest()
    return to_response(ReminderService(db).snooze(reminder_id, request.minutes))


@router.post("/{reminder_id}/reschedule", response_model=ReminderResponse)
def reschedule_reminder(reminder_id: str, payload: RescheduleRequest, db: Session = Depends(get_db)):
    reminder = ReminderService(db).reschedule(reminder_id, payload.scheduled_date, payload.scheduled_time)
    return to_response(reminder)


@router.get("/{reminder_id}/notifications", response_model=List[NotificationResponse])
def list_notifications(reminder_id: str, db: Session = Depends(get_db)):
    """Planned notification instances of a reminder with their delivery status."""
    return [
        NotificationResponse.model_validate(instance)
        for instance in ReminderService(db).list_notifications(reminder_id)
    ]
