"""Reconciliation of a user's reminders against mandatory vaccination schedules."""
from datetime import date, datetime
from dateutil.relativedelta import relativedelta
from typing import Dict, List, Optional
import logging
import re

from vaccine_reminders.config import settings
from vaccine_reminders.models.reminder import Reminder, Priority, parse_time_of_day
from vaccine_reminders.schemas import GovernmentVaccineSchedule, ReminderCreate, ScheduledDose
from vaccine_reminders.services.reminder_service import ReminderService


# Configure logging
logger = logging.getLogger(__name__)


# Standard vaccines with their dose ages in months
STANDARD_VACCINES: Dict[str, Dict] = {
    "polio": {
        "name": "Polio",
        "category": "routine",
        "doses": [
            (1, 2, "First dose at 2 months"),
            (2, 4, "Second dose at 4 months"),
            (3, 6, "Third dose at 6 months"),
            (4, 48, "Booster at 4 years"),
        ],
    },
    "measles": {
        "name": "MMR",
        "category": "routine",
        "doses": [
            (1, 12, "First dose at 12-15 months"),
            (2, 48, "Second dose at 4-6 years"),
        ],
    },
    "tetanus": {
        "name": "Tetanus",
        "category": "routine",
        "doses": [
            (1, 2, "Primary series"),
            (2, 120, "Booster every 10 years"),
        ],
    },
    "hepatitis_b": {
        "name": "Hepatitis B",
        "category": "routine",
        "doses": [
            (1, 0, "At birth"),
            (2, 1, "At 1-2 months"),
            (3, 6, "At 6-18 months"),
        ],
    },
    "covid19": {
        "name": "COVID-19",
        "category": "emergency",
        "doses": [
            (1, 144, "First dose"),
            (2, 145, "Second dose (4-12 weeks after first)"),
            (3, 150, "Booster (6 months after second)"),
        ],
    },
}


def default_government_schedule() -> List[GovernmentVaccineSchedule]:
    """National schedule used when a sync request supplies none.

    Covers the routine childhood vaccines of the standard catalogue.
    """
    schedules = []
    for vaccine_id, vaccine in STANDARD_VACCINES.items():
        if vaccine["category"] != "routine":
            continue
        schedules.append(GovernmentVaccineSchedule(
            id=vaccine_id,
            vaccine_name=vaccine["name"],
            description=f"{vaccine['name']} vaccination as per national schedule",
            mandatory=True,
            doses=[
                ScheduledDose(dose=dose, age_in_months=months, description=description)
                for dose, months, description in vaccine["doses"]
            ]
        ))
    return schedules


def is_schedule_applicable(schedule: GovernmentVaccineSchedule, age_in_months: int) -> bool:
    max_age = schedule.max_age_months
    if max_age is None:
        max_age = settings.government_sync_max_age_months
    return schedule.min_age_months <= age_in_months <= max_age


def estimated_birth_date(today: date, age_in_months: int) -> date:
    return today - relativedelta(months=age_in_months)


def dose_date(birth_date: date, dose: ScheduledDose) -> date:
    return birth_date + relativedelta(months=dose.age_in_months)


def matches_dose(reminder: Reminder, vaccine_name: str, dose_number: int) -> bool:
    """True when a reminder already covers a vaccine's dose.

    The vaccine name must appear in the reminder's name and "Dose <n>" in
    its name or description, both case-insensitive.
    """
    if vaccine_name.lower() not in reminder.name.lower():
        return False
    dose_pattern = re.compile(rf"\bdose\s+{dose_number}\b", re.IGNORECASE)
    return bool(dose_pattern.search(reminder.name) or dose_pattern.search(reminder.description or ""))


class GovernmentScheduleReconciler:
    """Creates missing reminders for mandatory vaccination doses.

    Reconciliation is additive only: existing reminders are never edited
    or removed.
    """

    def __init__(self, reminder_service: ReminderService):
        self.reminders = reminder_service

    def reconcile(
        self,
        user_id: str,
        age_in_months: int,
        schedules: Optional[List[GovernmentVaccineSchedule]] = None,
        now: Optional[datetime] = None
    ) -> List[Reminder]:
        """Create reminders for applicable doses the user has none for yet.

        Args:
            user_id: Owner of the reminders
            age_in_months: The user's current age in months
            schedules: Mandatory schedules (defaults to the national schedule)
            now: Current time (defaults to local now)

        Returns:
            Newly created reminders only
        """
        if now is None:
            now = datetime.now()
        if schedules is None:
            schedules = default_government_schedule()

        birth_date = estimated_birth_date(now.date(), age_in_months)
        scheduled_time = parse_time_of_day(settings.government_sync_time)
        created = []

        # Serializes concurrent syncs for one user so neither creates duplicates
        with self.reminders.locks.hold(f"user:{user_id}"):
            existing = self.reminders.list_by_user(user_id)

            for schedule in schedules:
                if not is_schedule_applicable(schedule, age_in_months):
                    logger.debug(f"Schedule {schedule.id} does not apply at {age_in_months} months")
                    continue

                for dose in schedule.doses:
                    if any(matches_dose(r, schedule.vaccine_name, dose.dose) for r in existing + created):
                        continue

                    reminder = self.reminders.create(ReminderCreate(
                        user_id=user_id,
                        name=f"{schedule.vaccine_name} - Dose {dose.dose}",
                        description=dose.description,
                        vaccine_id=schedule.id,
                        scheduled_date=dose_date(birth_date, dose),
                        scheduled_time=scheduled_time,
                        priority=Priority.HIGH if schedule.mandatory else Priority.MEDIUM,
                        government_mandated=True
                    ), now=now)
                    created.append(reminder)

        logger.info(
            f"Government schedule sync for user {user_id} at {age_in_months} months "
            f"created {len(created)} reminders"
        )
        return created
