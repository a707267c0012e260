"""Effective status evaluation for reminders."""
from datetime import datetime
from typing import Optional

from vaccine_reminders.models.reminder import Reminder, ReminderStatus


def effective_status(reminder: Reminder, now: Optional[datetime] = None) -> ReminderStatus:
    """Derive the status reported to callers.

    A pending reminder whose due date-time has been reached is reported as
    overdue. Overdue is never persisted, so rescheduling a reminder into the
    future makes it pending again without any extra transition.

    Args:
        reminder: The stored reminder
        now: Current time (defaults to local now)

    Returns:
        The effective ReminderStatus
    """
    if now is None:
        now = datetime.now()

    status = ReminderStatus(reminder.status)
    if status == ReminderStatus.PENDING and now >= reminder.due_datetime:
        return ReminderStatus.OVERDUE
    return status


def is_closed(reminder: Optional[Reminder], now: Optional[datetime] = None) -> bool:
    """True when no further notifications should go out for this reminder."""
    if reminder is None:
        return True
    return effective_status(reminder, now) in (ReminderStatus.COMPLETED, ReminderStatus.CANCELLED)
