"""Notification planning for reminders."""
from datetime import datetime, timedelta
from typing import Dict, List, Tuple
from sqlalchemy.orm import Session
import logging

from vaccine_reminders.exceptions import ValidationError
from vaccine_reminders.models.reminder import Reminder, ReminderStatus
from vaccine_reminders.models.notification import (
    NotificationInstance,
    NotificationChannel,
    NotificationStatus
)


# Configure logging
logger = logging.getLogger(__name__)


class NotificationPlanner:
    """Expands a reminder's notification settings into notification instances."""

    def __init__(self, db: Session):
        """Initialize notification planner.

        Args:
            db: Database session
        """
        self.db = db

    @staticmethod
    def _check(instance: NotificationInstance) -> None:
        try:
            instance.validate()
        except ValueError as e:
            raise ValidationError(str(e))

    def compute_schedule(self, reminder: Reminder) -> Dict[Tuple[int, str], datetime]:
        """Compute the fire time of every (offset, channel) pair of a reminder.

        Fire times are clamped to the reminder's due date-time, and pairs
        that would fire before the reminder was created are dropped so that
        importing past reminders does not flood the user.

        Args:
            reminder: The reminder to plan for

        Returns:
            Mapping of (offset_days, channel) to the absolute fire time
        """
        if not reminder.enable_notifications:
            return {}
        if ReminderStatus(reminder.status) in (ReminderStatus.COMPLETED, ReminderStatus.CANCELLED):
            return {}

        due = reminder.due_datetime
        created_at = reminder.created_at or datetime.now()
        offsets = sorted({int(days) for days in reminder.offsets}, reverse=True)
        channels = list(dict.fromkeys(NotificationChannel(c).value for c in reminder.channels))

        schedule = {}
        for offset in offsets:
            fire_date = reminder.scheduled_date - timedelta(days=offset)
            scheduled_for = min(datetime.combine(fire_date, reminder.notification_time), due)
            if scheduled_for < created_at:
                logger.debug(
                    f"Dropping {offset}-day notification for reminder {reminder.id}: "
                    f"{scheduled_for} is before creation at {created_at}"
                )
                continue
            for channel in channels:
                schedule[(offset, channel)] = scheduled_for

        return schedule

    def plan(self, reminder: Reminder) -> List[NotificationInstance]:
        """Replace the planned notification instances of a reminder.

        Instances whose key and fire time are unchanged are kept as they
        are (including delivery status), so planning twice yields the same
        instance set. The caller owns the transaction.

        Args:
            reminder: The reminder to plan for

        Returns:
            The planned instances ordered by fire time
        """
        existing = {
            instance.key: instance
            for instance in self.db.query(NotificationInstance).filter(
                NotificationInstance.reminder_id == reminder.id
            ).all()
        }
        schedule = self.compute_schedule(reminder)

        planned = []
        for (offset, channel), scheduled_for in schedule.items():
            key = (reminder.id, offset, channel)
            instance = existing.pop(key, None)

            if instance is None:
                instance = NotificationInstance(
                    id=NotificationInstance.build_id(reminder.id, offset, channel),
                    reminder_id=reminder.id,
                    user_id=reminder.user_id,
                    offset_days=offset,
                    channel=NotificationChannel(channel),
                    scheduled_for=scheduled_for,
                    status=NotificationStatus.PENDING
                )
                self._check(instance)
                self.db.add(instance)
            elif instance.scheduled_for != scheduled_for:
                instance.scheduled_for = scheduled_for
                instance.status = NotificationStatus.PENDING
                instance.attempted_at = None
                instance.sent_at = None
                instance.failure_reason = None
                self._check(instance)

            planned.append(instance)

        # Whatever is left no longer matches the reminder's settings
        for stale in existing.values():
            self.db.delete(stale)

        self.db.flush()

        logger.info(
            f"Planned {len(planned)} notifications for reminder {reminder.id} "
            f"(discarded {len(existing)})"
        )
        return sorted(planned, key=lambda i: (i.scheduled_for, NotificationChannel(i.channel).value))

    def discard(self, reminder_id: str) -> int:
        """Remove every planned instance of a reminder.

        Returns:
            Number of instances removed
        """
        instances = self.db.query(NotificationInstance).filter(
            NotificationInstance.reminder_id == reminder_id
        ).all()
        for instance in instances:
            self.db.delete(instance)
        self.db.flush()
        return len(instances)
