"""Reminder service owning the reminder lifecycle."""
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import uuid
import logging

from vaccine_reminders.config import settings
from vaccine_reminders.exceptions import (
    ReminderEngineError,
    ValidationError,
    MissingFieldError,
    InvalidRecurrenceError,
    InconsistentRecurrenceError,
    InvalidStatusTransitionError,
    ResourceNotFoundError
)
from vaccine_reminders.models.reminder import Reminder, ReminderStatus, Priority, parse_time_of_day
from vaccine_reminders.models.notification import NotificationInstance, NotificationChannel
from vaccine_reminders.schemas import ReminderCreate, ReminderUpdate, ReminderStats, CalendarEvent
from vaccine_reminders.services.lifecycle import effective_status
from vaccine_reminders.services.locks import KeyedLockRegistry, reminder_locks
from vaccine_reminders.services.notification_planner import NotificationPlanner
from vaccine_reminders.services.recurrence import (
    compute_next_due_date,
    is_within_bounds,
    iter_occurrences,
    next_occurrence
)


# Configure logging
logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = {"scheduled_date", "scheduled_time", "is_recurring", "recurring_pattern"}
NOTIFICATION_FIELDS = {"enable_notifications", "notification_methods", "advance_notification_days", "time_of_day"}
REQUIRED_FIELDS = {"name", "scheduled_date", "scheduled_time", "is_recurring", "priority",
                   "government_mandated", "enable_notifications", "notification_methods",
                   "advance_notification_days", "time_of_day"}


# Leading location segments FastAPI adds to request validation errors
REQUEST_LOCATIONS = ("body", "query", "path")


def validation_error_from(errors: List[Dict[str, Any]]) -> ValidationError:
    """Translate pydantic error dicts into an engine error."""
    translated = []
    for error in errors:
        loc = list(error["loc"])
        if len(loc) > 1 and loc[0] in REQUEST_LOCATIONS:
            loc = loc[1:]
        translated.append({"loc": ".".join(str(part) for part in loc), "msg": error["msg"], "type": error["type"]})

    first = translated[0]
    if "recurringpattern" in first["loc"].lower().replace("_", ""):
        return InvalidRecurrenceError(first["msg"])
    if first["type"] == "missing":
        return MissingFieldError(first["loc"])
    return ValidationError(f"{first['loc']}: {first['msg']}", details={"errors": translated})


class ReminderService:
    """Service for creating, updating and completing vaccination reminders.

    Every mutation of one reminder runs under that reminder's lock and in a
    single transaction together with the re-planning of its notifications.
    """

    def __init__(self, db: Session, locks: Optional[KeyedLockRegistry] = None):
        """Initialize reminder service.

        Args:
            db: Database session
            locks: Per-reminder lock registry (defaults to the process-wide one)
        """
        self.db = db
        self.locks = locks or reminder_locks
        self.planner = NotificationPlanner(db)

    @contextmanager
    def _transaction(self):
        """Commit on success, roll back everything on any failure."""
        try:
            yield
            self.db.commit()
        except ReminderEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RuntimeError(f"Failed to save reminder changes: {str(e)}") from e
        except Exception:
            self.db.rollback()
            raise

    def _load(self, reminder_id: str) -> Reminder:
        # Row lock for writers in other processes; dialects without
        # SELECT ... FOR UPDATE (SQLite) omit it
        reminder = self.db.get(Reminder, reminder_id, populate_existing=True, with_for_update=True)
        if reminder is None:
            raise ResourceNotFoundError("reminder", reminder_id)
        return reminder

    @staticmethod
    def _check(reminder: Reminder) -> None:
        try:
            reminder.validate()
        except ValueError as e:
            raise ValidationError(str(e))

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, data: Union[ReminderCreate, Dict[str, Any]], now: Optional[datetime] = None) -> Reminder:
        """Create a new reminder and plan its notifications.

        Args:
            data: Reminder fields (schema or plain dict)
            now: Creation time (defaults to local now)

        Returns:
            The created reminder

        Raises:
            ValidationError: If the data is malformed or inconsistent
        """
        if now is None:
            now = datetime.now()

        if not isinstance(data, ReminderCreate):
            try:
                data = ReminderCreate.model_validate(data)
            except PydanticValidationError as e:
                raise validation_error_from(e.errors())

        if not data.name.strip():
            raise MissingFieldError("name")
        if data.is_recurring and data.recurring_pattern is None:
            raise InconsistentRecurrenceError(True)
        if not data.is_recurring and data.recurring_pattern is not None:
            raise InconsistentRecurrenceError(False)

        reminder_id = str(uuid.uuid4())
        methods = data.notification_methods
        if methods is None:
            methods = settings.default_notification_methods
        offsets = data.advance_notification_days
        if offsets is None:
            offsets = settings.default_advance_notification_days

        reminder = Reminder(
            id=reminder_id,
            user_id=data.user_id,
            name=data.name.strip(),
            description=data.description,
            notes=data.notes,
            vaccine_id=data.vaccine_id,
            scheduled_date=data.scheduled_date,
            scheduled_time=data.scheduled_time or parse_time_of_day(settings.default_scheduled_time),
            is_recurring=data.is_recurring,
            series_id=reminder_id,
            occurrence_number=1,
            priority=data.priority,
            government_mandated=data.government_mandated,
            status=ReminderStatus.PENDING,
            enable_notifications=data.enable_notifications,
            notification_methods=[NotificationChannel(m).value for m in methods],
            advance_notification_days=[int(d) for d in offsets],
            notification_time=data.time_of_day or parse_time_of_day(settings.default_time_of_day),
            created_at=now,
            updated_at=now
        )
        reminder.set_recurring_pattern(data.recurring_pattern)
        reminder.next_due_date = compute_next_due_date(reminder.scheduled_date, data.recurring_pattern)
        self._check(reminder)

        with self._transaction():
            self.db.add(reminder)
            self.db.flush()
            self.planner.plan(reminder)

        logger.info(f"Created reminder {reminder.id} ({reminder.name}) for user {reminder.user_id}")
        return reminder

    def get(self, reminder_id: str) -> Reminder:
        """Get a reminder by id.

        Raises:
            ResourceNotFoundError: If the reminder does not exist
        """
        reminder = self.db.get(Reminder, reminder_id)
        if reminder is None:
            raise ResourceNotFoundError("reminder", reminder_id)
        return reminder

    def update(
        self,
        reminder_id: str,
        patch: Union[ReminderUpdate, Dict[str, Any]],
        now: Optional[datetime] = None
    ) -> Reminder:
        """Merge a partial update into a reminder.

        The id and owning user are immutable. Schedule changes recompute
        next_due_date; schedule or notification changes re-plan the
        reminder's notifications in the same transaction.

        Raises:
            ResourceNotFoundError: If the reminder does not exist
            ValidationError: If the merged reminder would be inconsistent
        """
        if now is None:
            now = datetime.now()

        if not isinstance(patch, ReminderUpdate):
            try:
                patch = ReminderUpdate.model_validate(patch)
            except PydanticValidationError as e:
                raise validation_error_from(e.errors())
        changes = {field: getattr(patch, field) for field in patch.model_fields_set}

        for field, value in changes.items():
            if field in REQUIRED_FIELDS and value is None:
                raise MissingFieldError(field)
        if "name" in changes and not changes["name"].strip():
            raise MissingFieldError("name")

        with self.locks.hold(reminder_id):
            with self._transaction():
                reminder = self._load(reminder_id)

                is_recurring = changes.get("is_recurring", reminder.is_recurring)
                if "recurring_pattern" in changes:
                    pattern = changes["recurring_pattern"]
                elif is_recurring:
                    pattern = reminder.recurring_pattern
                else:
                    pattern = None
                if is_recurring and pattern is None:
                    raise InconsistentRecurrenceError(True)
                if not is_recurring and pattern is not None:
                    raise InconsistentRecurrenceError(False)

                for field, value in changes.items():
                    if field in ("is_recurring", "recurring_pattern"):
                        continue
                    if field == "time_of_day":
                        reminder.notification_time = value
                    elif field == "notification_methods":
                        reminder.notification_methods = [NotificationChannel(m).value for m in value]
                    elif field == "advance_notification_days":
                        reminder.advance_notification_days = [int(d) for d in value]
                    elif field == "name":
                        reminder.name = value.strip()
                    elif field in ("description", "notes"):
                        setattr(reminder, field, value or "")
                    else:
                        setattr(reminder, field, value)

                reminder.is_recurring = is_recurring
                reminder.set_recurring_pattern(pattern)
                reminder.updated_at = now
                self._check(reminder)

                if SCHEDULE_FIELDS & changes.keys():
                    reminder.next_due_date = compute_next_due_date(reminder.scheduled_date, pattern)
                if (SCHEDULE_FIELDS | NOTIFICATION_FIELDS) & changes.keys():
                    self.planner.plan(reminder)

        logger.info(f"Updated reminder {reminder_id}: {sorted(changes)}")
        return reminder

    def delete(self, reminder_id: str) -> bool:
        """Delete a reminder and all its planned notifications.

        Raises:
            ResourceNotFoundError: If the reminder does not exist
        """
        with self.locks.hold(reminder_id):
            with self._transaction():
                reminder = self._load(reminder_id)
                removed = self.planner.discard(reminder_id)
                self.db.delete(reminder)

        logger.info(f"Deleted reminder {reminder_id} and {removed} notifications")
        return True

    def list_by_user(
        self,
        user_id: str,
        status: Optional[ReminderStatus] = None,
        priority: Optional[Priority] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> List[Reminder]:
        """List a user's reminders ordered by due date-time.

        Args:
            user_id: Owner of the reminders
            status: Only reminders with this effective status
            priority: Only reminders with this priority
            start_date: Only reminders scheduled on or after this date
            end_date: Only reminders scheduled on or before this date
            skip: Number of matching reminders to skip
            limit: Maximum number of reminders to return
            now: Time used to evaluate effective status

        Raises:
            ValidationError: If the range or paging arguments are invalid
        """
        if start_date and end_date and end_date < start_date:
            raise ValidationError(
                "End date must not be before start date.",
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()}
            )
        if skip < 0 or (limit is not None and limit < 1):
            raise ValidationError("skip must be >= 0 and limit >= 1.", details={"skip": skip, "limit": limit})

        query = self.db.query(Reminder).filter(Reminder.user_id == user_id)
        if priority is not None:
            query = query.filter(Reminder.priority == Priority(priority))
        if start_date is not None:
            query = query.filter(Reminder.scheduled_date >= start_date)
        if end_date is not None:
            query = query.filter(Reminder.scheduled_date <= end_date)
        query = query.order_by(Reminder.scheduled_date, Reminder.scheduled_time, Reminder.created_at)

        if status is None:
            if skip:
                query = query.offset(skip)
            if limit is not None:
                query = query.limit(limit)
            return query.all()

        # Overdue is derived, so status filtering and paging happen here
        if now is None:
            now = datetime.now()
        status = ReminderStatus(status)
        matches = [reminder for reminder in query.all() if effective_status(reminder, now) == status]
        stop = skip + limit if limit is not None else None
        return matches[skip:stop]

    def bulk_create(
        self,
        user_id: str,
        items: List[Dict[str, Any]],
        now: Optional[datetime] = None
    ) -> Tuple[List[Reminder], List[Tuple[int, ReminderEngineError]]]:
        """Create several reminders for one user, each in its own transaction.

        A rejected item does not stop the others.

        Returns:
            The created reminders and ``(index, error)`` for every rejected item
        """
        created = []
        errors = []
        for index, item in enumerate(items):
            data = {key: value for key, value in item.items() if key not in ("userId", "user_id")}
            data["user_id"] = user_id
            try:
                created.append(self.create(data, now=now))
            except ReminderEngineError as e:
                logger.warning(f"Bulk item {index} for user {user_id} rejected: {e.message}")
                errors.append((index, e))

        logger.info(f"Bulk created {len(created)} of {len(items)} reminders for user {user_id}")
        return created, errors

    # ------------------------------------------------------------------
    # Lifecycle actions
    # ------------------------------------------------------------------

    def mark_completed(
        self,
        reminder_id: str,
        completed_date: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> Reminder:
        """Mark a reminder completed, spawning the next occurrence if recurring.

        The completion and the creation of the next occurrence happen in one
        transaction. No next occurrence is created once the pattern's
        end_date or max_occurrences bound is passed.

        Raises:
            ResourceNotFoundError: If the reminder does not exist
            InvalidStatusTransitionError: If it is already completed or cancelled
        """
        if now is None:
            now = datetime.now()

        with self.locks.hold(reminder_id):
            with self._transaction():
                reminder = self._load(reminder_id)
                status = ReminderStatus(reminder.status)
                if status in (ReminderStatus.COMPLETED, ReminderStatus.CANCELLED):
                    raise InvalidStatusTransitionError(status.value, "complete")

                reminder.status = ReminderStatus.COMPLETED
                reminder.completed_date = completed_date or now
                reminder.updated_at = now
                self.planner.plan(reminder)

                successor = self._spawn_next_occurrence(reminder, now)

        if successor is not None:
            logger.info(
                f"Completed reminder {reminder_id}; next occurrence {successor.id} "
                f"due {successor.scheduled_date}"
            )
        else:
            logger.info(f"Completed reminder {reminder_id}")
        return reminder

    def _spawn_next_occurrence(self, reminder: Reminder, now: datetime) -> Optional[Reminder]:
        pattern = reminder.recurring_pattern
        if pattern is None:
            return None

        next_date = reminder.next_due_date or next_occurrence(reminder.scheduled_date, pattern)
        next_number = reminder.occurrence_number + 1
        if not is_within_bounds(next_date, pattern, next_number):
            logger.info(f"Recurrence of series {reminder.series_id} ended at occurrence {reminder.occurrence_number}")
            return None

        successor = Reminder(
            id=str(uuid.uuid4()),
            user_id=reminder.user_id,
            name=reminder.name,
            description=reminder.description,
            notes=reminder.notes,
            vaccine_id=reminder.vaccine_id,
            scheduled_date=next_date,
            scheduled_time=reminder.scheduled_time,
            is_recurring=True,
            series_id=reminder.series_id,
            occurrence_number=next_number,
            priority=reminder.priority,
            government_mandated=reminder.government_mandated,
            status=ReminderStatus.PENDING,
            enable_notifications=reminder.enable_notifications,
            notification_methods=list(reminder.channels),
            advance_notification_days=list(reminder.offsets),
            notification_time=reminder.notification_time,
            created_at=now,
            updated_at=now
        )
        successor.set_recurring_pattern(pattern)
        successor.next_due_date = next_occurrence(next_date, pattern)
        self._check(successor)

        self.db.add(successor)
        self.db.flush()
        self.planner.plan(successor)
        return successor

    def cancel(self, reminder_id: str, now: Optional[datetime] = None) -> Reminder:
        """Cancel a reminder and drop its planned notifications.

        Raises:
            ResourceNotFoundError: If the reminder does not exist
            InvalidStatusTransitionError: If it is already completed or cancelled
        """
        if now is None:
            now = datetime.now()

        with self.locks.hold(reminder_id):
            with self._transaction():
                reminder = self._load(reminder_id)
                status = ReminderStatus(reminder.status)
                if status in (ReminderStatus.COMPLETED, ReminderStatus.CANCELLED):
                    raise InvalidStatusTransitionError(status.value, "cancel")

                reminder.status = ReminderStatus.CANCELLED
                reminder.updated_at = now
                self.planner.plan(reminder)

        logger.info(f"Cancelled reminder {reminder_id}")
        return reminder

    def snooze(self, reminder_id: str, minutes: int = 60, now: Optional[datetime] = None) -> Reminder:
        """Push a reminder's due time to ``minutes`` from now."""
        if now is None:
            now = datetime.now()
        target = now + timedelta(minutes=minutes)
        return self.update(
            reminder_id,
            {"scheduled_date": target.date(), "scheduled_time": target.time().replace(microsecond=0)},
            now=now
        )

    def reschedule(
        self,
        reminder_id: str,
        scheduled_date: date,
        scheduled_time: Optional[time] = None,
        now: Optional[datetime] = None
    ) -> Reminder:
        """Move a reminder to a new date (and optionally time)."""
        patch: Dict[str, Any] = {"scheduled_date": scheduled_date}
        if scheduled_time is not None:
            patch["scheduled_time"] = scheduled_time
        return self.update(reminder_id, patch, now=now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_overdue(self, user_id: str, now: Optional[datetime] = None) -> List[Reminder]:
        """Reminders of a user whose effective status is overdue."""
        if now is None:
            now = datetime.now()
        return [
            reminder for reminder in self.list_by_user(user_id)
            if effective_status(reminder, now) == ReminderStatus.OVERDUE
        ]

    def get_upcoming(self, user_id: str, within_days: int = 30, now: Optional[datetime] = None) -> List[Reminder]:
        """Pending reminders of a user due within the next ``within_days`` days."""
        if now is None:
            now = datetime.now()
        horizon = now + timedelta(days=within_days)
        return [
            reminder for reminder in self.list_by_user(user_id)
            if effective_status(reminder, now) == ReminderStatus.PENDING
            and reminder.due_datetime <= horizon
        ]

    def search(self, user_id: str, query: str) -> List[Reminder]:
        """Case-insensitive literal substring search over name, description and notes.

        Raises:
            MissingFieldError: If the query is empty or only whitespace
        """
        term = (query or "").strip()
        if not term:
            raise MissingFieldError("query")
        return self.db.query(Reminder).filter(
            Reminder.user_id == user_id,
            or_(
                Reminder.name.icontains(term, autoescape=True),
                Reminder.description.icontains(term, autoescape=True),
                Reminder.notes.icontains(term, autoescape=True)
            )
        ).order_by(Reminder.scheduled_date, Reminder.scheduled_time).all()

    def get_stats(self, user_id: str, now: Optional[datetime] = None) -> ReminderStats:
        """Count a user's reminders by effective status."""
        if now is None:
            now = datetime.now()
        by_status = {status: 0 for status in ReminderStatus}
        for reminder in self.list_by_user(user_id):
            by_status[effective_status(reminder, now)] += 1
        return ReminderStats(
            total=sum(by_status.values()),
            by_status=by_status,
            upcoming=by_status[ReminderStatus.PENDING],
            overdue=by_status[ReminderStatus.OVERDUE]
        )

    def get_calendar_events(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
        now: Optional[datetime] = None
    ) -> List[CalendarEvent]:
        """Calendar events for a date range.

        Includes every reminder scheduled inside the range plus projected
        future occurrences of open recurring reminders.
        """
        if now is None:
            now = datetime.now()
        if end_date < start_date:
            raise ValidationError(
                "End date must not be before start date.",
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()}
            )

        events = []
        for reminder in self.list_by_user(user_id):
            status = effective_status(reminder, now)
            if start_date <= reminder.scheduled_date <= end_date:
                events.append(CalendarEvent(
                    id=f"event_{reminder.id}",
                    reminder_id=reminder.id,
                    title=reminder.name,
                    event_date=reminder.scheduled_date,
                    event_time=reminder.scheduled_time,
                    priority=reminder.priority,
                    status=status
                ))

            pattern = reminder.recurring_pattern
            if pattern is None or status in (ReminderStatus.COMPLETED, ReminderStatus.CANCELLED):
                continue
            for number, occurrence in iter_occurrences(
                reminder.scheduled_date,
                pattern,
                start_date,
                end_date,
                first_occurrence_number=reminder.occurrence_number,
                include_start=False
            ):
                events.append(CalendarEvent(
                    id=f"recurring_{reminder.series_id}_{number}",
                    reminder_id=reminder.id,
                    title=f"{reminder.name} (Recurring)",
                    event_date=occurrence,
                    event_time=reminder.scheduled_time,
                    priority=reminder.priority,
                    status=ReminderStatus.PENDING,
                    is_projection=True
                ))

        return sorted(events, key=lambda e: (e.event_date, e.event_time))

    def list_notifications(self, reminder_id: str) -> List[NotificationInstance]:
        """Planned notification instances of a reminder, earliest first."""
        self.get(reminder_id)
        return self.db.query(NotificationInstance).filter(
            NotificationInstance.reminder_id == reminder_id
        ).order_by(NotificationInstance.scheduled_for, NotificationInstance.channel).all()
