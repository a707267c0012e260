"""Script to reconcile a user's reminders with the national vaccination schedule."""
import argparse
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from vaccine_reminders.database import SessionLocal, init_db
from vaccine_reminders.exceptions import ReminderEngineError
from vaccine_reminders.services.government_sync import GovernmentScheduleReconciler
from vaccine_reminders.services.reminder_service import ReminderService


def sync_government_schedule(user_id: str, age_in_months: int) -> int:
    """
    Create missing mandatory reminders for a user.

    Args:
        user_id: Owner of the reminders
        age_in_months: The user's current age in months

    Returns:
        Number of reminders created
    """
    init_db()
    db = SessionLocal()
    try:
        reconciler = GovernmentScheduleReconciler(ReminderService(db))
        created = reconciler.reconcile(user_id, age_in_months)

        if not created:
            print(f"User '{user_id}' is already up to date.")
        for reminder in created:
            print(f"Created: {reminder.name} on {reminder.scheduled_date} ({reminder.priority.value})")
        return len(created)
    finally:
        db.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("user_id", help="User to reconcile")
    parser.add_argument("age_in_months", type=int, help="The user's current age in months")
    args = parser.parse_args(argv)

    if args.age_in_months < 0:
        parser.error("age_in_months must be non-negative")

    try:
        sync_government_schedule(args.user_id, args.age_in_months)
    except ReminderEngineError as e:
        print(f"Error syncing schedule: {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
