"""Database models package."""
from vaccine_reminders.models.reminder import Reminder, ReminderStatus, Priority, RecurrenceType
from vaccine_reminders.models.notification import NotificationInstance, NotificationChannel, NotificationStatus
from vaccine_reminders.models.contact import UserContact

__all__ = [
    "Reminder",
    "ReminderStatus",
    "Priority",
    "RecurrenceType",
    "NotificationInstance",
    "NotificationChannel",
    "NotificationStatus",
    "UserContact",
]
