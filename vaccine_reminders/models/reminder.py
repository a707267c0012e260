"""Reminder model for scheduled vaccination actions."""
from sqlalchemy import Column, String, Text, Date, Time, DateTime, Boolean, Integer, Enum, JSON
from datetime import datetime, date, time
from typing import List, Optional
import enum

from vaccine_reminders.database import Base


class ReminderStatus(str, enum.Enum):
    """Reminder status enumeration.

    OVERDUE is never stored; it is only reported as an effective status.
    """
    PENDING = "pending"
    OVERDUE = "overdue"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Priority(str, enum.Enum):
    """Reminder priority enumeration."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecurrenceType(str, enum.Enum):
    """Supported recurrence units."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Reminder(Base):
    """Reminder model representing one scheduled vaccination action."""

    __tablename__ = "reminders"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    vaccine_id = Column(String(64), nullable=True)

    scheduled_date = Column(Date, nullable=False, index=True)
    scheduled_time = Column(Time, nullable=False)

    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_type = Column(Enum(RecurrenceType), nullable=True)
    recurrence_interval = Column(Integer, nullable=True)
    recurrence_end_date = Column(Date, nullable=True)
    recurrence_max_occurrences = Column(Integer, nullable=True)
    next_due_date = Column(Date, nullable=True)
    series_id = Column(String(36), nullable=False, index=True)
    occurrence_number = Column(Integer, nullable=False, default=1)

    priority = Column(Enum(Priority), nullable=False, default=Priority.MEDIUM)
    government_mandated = Column(Boolean, nullable=False, default=False)

    status = Column(Enum(ReminderStatus), nullable=False, default=ReminderStatus.PENDING, index=True)
    completed_date = Column(DateTime, nullable=True)

    enable_notifications = Column(Boolean, nullable=False, default=True)
    notification_methods = Column(JSON, nullable=False, default=list)
    advance_notification_days = Column(JSON, nullable=False, default=list)
    notification_time = Column(Time, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    def __repr__(self) -> str:
        return f"<Reminder(id={self.id}, user_id={self.user_id}, name={self.name}, date={self.scheduled_date}, status={self.status})>"

    @property
    def due_datetime(self) -> datetime:
        """Scheduled date combined with scheduled time (local, naive)."""
        return datetime.combine(self.scheduled_date, self.scheduled_time)

    @property
    def recurring_pattern(self):
        """The stored recurrence as a RecurringPattern value object, or None."""
        if not self.is_recurring or self.recurrence_type is None:
            return None
        from vaccine_reminders.schemas import RecurringPattern
        return RecurringPattern(
            type=self.recurrence_type,
            interval=self.recurrence_interval or 1,
            end_date=self.recurrence_end_date,
            max_occurrences=self.recurrence_max_occurrences
        )

    def set_recurring_pattern(self, pattern) -> None:
        """Flatten a RecurringPattern (or None) into the recurrence columns."""
        if pattern is None:
            self.recurrence_type = None
            self.recurrence_interval = None
            self.recurrence_end_date = None
            self.recurrence_max_occurrences = None
            return
        self.recurrence_type = RecurrenceType(pattern.type)
        self.recurrence_interval = pattern.interval
        self.recurrence_end_date = pattern.end_date
        self.recurrence_max_occurrences = pattern.max_occurrences

    @property
    def channels(self) -> List[str]:
        return list(self.notification_methods or [])

    @property
    def offsets(self) -> List[int]:
        return list(self.advance_notification_days or [])

    def validate(self) -> None:
        """Validate reminder data."""
        if not self.id:
            raise ValueError("Reminder ID is required")
        if not self.user_id:
            raise ValueError("User ID is required")
        if not self.name or not self.name.strip():
            raise ValueError("Name is required")
        if not isinstance(self.scheduled_date, date):
            raise ValueError("Scheduled date must be a date object")
        if not isinstance(self.scheduled_time, time):
            raise ValueError("Scheduled time must be a time object")
        if self.is_recurring and self.recurrence_type is None:
            raise ValueError("Recurring reminders must have a recurrence pattern")
        if not self.is_recurring and self.recurrence_type is not None:
            raise ValueError("Non-recurring reminders must not have a recurrence pattern")
        if any(int(days) < 0 for days in self.offsets):
            raise ValueError("Advance notification days must be non-negative")
        if self.enable_notifications and not self.channels:
            raise ValueError("At least one notification method is required when notifications are enabled")
        if self.status == ReminderStatus.OVERDUE:
            raise ValueError("Overdue is a derived status and cannot be stored")
        if self.status == ReminderStatus.COMPLETED and not self.completed_date:
            raise ValueError("Completed reminders must have a completed_date")


def parse_time_of_day(value) -> Optional[time]:
    """Parse an 'HH:MM' (or 'HH:MM:SS') string into a time; pass times through."""
    if value is None or isinstance(value, time):
        return value
    return time.fromisoformat(str(value))
