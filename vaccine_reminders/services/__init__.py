"""Business logic services package."""
from vaccine_reminders.services.reminder_service import ReminderService
from vaccine_reminders.services.notification_planner import NotificationPlanner
from vaccine_reminders.services.dispatcher import NotificationDispatcher, TickSummary
from vaccine_reminders.services.government_sync import GovernmentScheduleReconciler

__all__ = [
    "ReminderService",
    "NotificationPlanner",
    "NotificationDispatcher",
    "TickSummary",
    "GovernmentScheduleReconciler"
]
