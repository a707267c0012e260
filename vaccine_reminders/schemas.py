"""Request and response schemas for the reminder engine."""
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from vaccine_reminders.models.reminder import Priority, RecurrenceType, ReminderStatus
from vaccine_reminders.models.notification import NotificationChannel, NotificationStatus


class CamelModel(BaseModel):
    """Base schema exchanging camelCase keys while accepting snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecurringPattern(CamelModel):
    """Recurrence rule value object.

    When both end_date and max_occurrences are set the recurrence stops at
    whichever bound is reached first.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: RecurrenceType
    interval: int = Field(default=1, ge=1)
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = Field(default=None, ge=1)


class ReminderCreate(CamelModel):
    """Schema for creating a reminder.

    Notification settings left unset fall back to the configured defaults.
    """

    user_id: str = Field(min_length=1)
    name: str
    description: str = ""
    notes: str = ""
    vaccine_id: Optional[str] = None
    scheduled_date: date
    scheduled_time: Optional[time] = None
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    priority: Priority = Priority.MEDIUM
    government_mandated: bool = False
    enable_notifications: bool = True
    notification_methods: Optional[List[NotificationChannel]] = None
    advance_notification_days: Optional[List[int]] = None
    time_of_day: Optional[time] = None

    @field_validator("advance_notification_days")
    @classmethod
    def offsets_non_negative(cls, value):
        if value is not None and any(days < 0 for days in value):
            raise ValueError("advance notification days must be non-negative")
        return value


class ReminderUpdate(CamelModel):
    """Schema for a partial reminder update; only set fields are applied."""

    name: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    vaccine_id: Optional[str] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    is_recurring: Optional[bool] = None
    recurring_pattern: Optional[RecurringPattern] = None
    priority: Optional[Priority] = None
    government_mandated: Optional[bool] = None
    enable_notifications: Optional[bool] = None
    notification_methods: Optional[List[NotificationChannel]] = None
    advance_notification_days: Optional[List[int]] = None
    time_of_day: Optional[time] = None

    @field_validator("advance_notification_days")
    @classmethod
    def offsets_non_negative(cls, value):
        if value is not None and any(days < 0 for days in value):
            raise ValueError("advance notification days must be non-negative")
        return value


class CompleteRequest(CamelModel):
    completed_date: Optional[datetime] = None


class SnoozeRequest(CamelModel):
    minutes: int = Field(default=60, gt=0)


class RescheduleRequest(CamelModel):
    scheduled_date: date
    scheduled_time: Optional[time] = None


class ReminderResponse(CamelModel):
    """Reminder as reported to callers, with its effective status."""

    id: str
    user_id: str
    name: str
    description: str
    notes: str
    vaccine_id: Optional[str] = None
    scheduled_date: date
    scheduled_time: time
    is_recurring: bool
    recurring_pattern: Optional[RecurringPattern] = None
    next_due_date: Optional[date] = None
    series_id: str
    occurrence_number: int
    priority: Priority
    government_mandated: bool
    status: ReminderStatus
    stored_status: ReminderStatus
    completed_date: Optional[datetime] = None
    enable_notifications: bool
    notification_methods: List[NotificationChannel]
    advance_notification_days: List[int]
    time_of_day: time
    created_at: datetime
    updated_at: datetime


class NotificationResponse(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    reminder_id: str
    offset_days: int
    channel: NotificationChannel
    scheduled_for: datetime
    status: NotificationStatus
    sent_at: Optional[datetime] = None
    failure_reason: Optional[str] = None


class CalendarEvent(CamelModel):
    """A reminder, or a projected future occurrence of one, on a calendar."""

    id: str
    reminder_id: str
    title: str
    event_date: date
    event_time: time
    priority: Priority
    status: ReminderStatus
    is_projection: bool = False


class ScheduledDose(CamelModel):
    """One dose entry of a mandatory vaccination schedule."""

    dose: int = Field(ge=1)
    age_in_months: int = Field(ge=0)
    description: str = ""


class GovernmentVaccineSchedule(CamelModel):
    """Externally supplied mandatory vaccination schedule for one vaccine."""

    id: str
    vaccine_name: str
    description: str = ""
    source: str = "National Immunization Program"
    mandatory: bool = True
    min_age_months: int = Field(default=0, ge=0)
    max_age_months: Optional[int] = Field(default=None, ge=0)
    doses: List[ScheduledDose]


class GovernmentSyncRequest(CamelModel):
    age_in_months: int = Field(ge=0)
    schedules: Optional[List[GovernmentVaccineSchedule]] = None


class ReminderStats(CamelModel):
    """Counts of a user's reminders by effective status."""

    total: int
    by_status: Dict[ReminderStatus, int]
    upcoming: int
    overdue: int


class BulkCreateRequest(CamelModel):
    # Items are validated one by one so a bad item does not reject the batch
    reminders: List[Dict[str, Any]] = Field(min_length=1)


class BulkItemError(CamelModel):
    index: int
    code: str
    message: str
    details: Dict[str, Any] = {}


class BulkCreateResponse(CamelModel):
    results: List[ReminderResponse]
    errors: List[BulkItemError]
    total_processed: int
    success_count: int
    error_count: int
