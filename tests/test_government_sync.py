"""Unit tests for government schedule reconciliation."""
import pytest
from datetime import date, datetime, time
from sqlalchemy.orm import Session

from vaccine_reminders.models.reminder import Reminder, Priority
from vaccine_reminders.schemas import GovernmentVaccineSchedule, ScheduledDose
from vaccine_reminders.services.government_sync import (
    GovernmentScheduleReconciler,
    STANDARD_VACCINES,
    default_government_schedule,
    is_schedule_applicable,
    matches_dose
)
from vaccine_reminders.services.reminder_service import ReminderService


NOW = datetime(2025, 1, 15, 10, 0)


def polio_schedule(mandatory=True, **overrides):
    fields = dict(
        id="polio",
        vaccine_name="Polio",
        description="Polio vaccination as per national schedule",
        mandatory=mandatory,
        doses=[
            ScheduledDose(dose=1, age_in_months=2, description="First dose at 2 months"),
            ScheduledDose(dose=2, age_in_months=4, description="Second dose at 4 months"),
            ScheduledDose(dose=3, age_in_months=6, description="Third dose at 6 months"),
            ScheduledDose(dose=4, age_in_months=48, description="Booster at 4 years"),
        ]
    )
    fields.update(overrides)
    return GovernmentVaccineSchedule(**fields)


class TestReconcile:
    """Test cases for GovernmentScheduleReconciler.reconcile."""

    def test_creates_one_reminder_per_dose(self, test_db: Session):
        reconciler = GovernmentScheduleReconciler(ReminderService(test_db))

        created = reconciler.reconcile("child-1", 3, [polio_schedule()], now=NOW)

        assert [r.name for r in created] == [
            "Polio - Dose 1", "Polio - Dose 2", "Polio - Dose 3", "Polio - Dose 4"
        ]
        # Born 2024-10-15 when three months old on 2025-01-15
        assert [r.scheduled_date for r in created] == [
            date(2024, 12, 15), date(2025, 2, 15), date(2025, 4, 15), date(2028, 10, 15)
        ]
        assert all(r.scheduled_time == time(9, 0) for r in created)
        assert all(r.government_mandated for r in created)
        assert all(r.priority == Priority.HIGH for r in created)
        assert created[0].description == "First dose at 2 months"
        assert created[0].vaccine_id == "polio"

    def test_optional_schedule_gets_medium_priority(self, test_db: Session):
        reconciler = GovernmentScheduleReconciler(ReminderService(test_db))

        created = reconciler.reconcile("child-1", 3, [polio_schedule(mandatory=False)], now=NOW)

        assert all(r.priority == Priority.MEDIUM for r in created)
        assert all(r.government_mandated for r in created)

    def test_second_sync_creates_nothing(self, test_db: Session):
        reconciler = GovernmentScheduleReconciler(ReminderService(test_db))

        reconciler.reconcile("child-1", 3, [polio_schedule()], now=NOW)
        again = reconciler.reconcile("child-1", 3, [polio_schedule()], now=NOW)

        assert again == []
        assert test_db.query(Reminder).count() == 4

    def test_existing_user_reminder_counts_as_match(self, test_db: Session):
        service = ReminderService(test_db)
        service.create({
            "userId": "child-1",
            "name": "polio booster",
            "description": "dose 4 at the clinic",
            "scheduledDate": "2028-10-01"
        }, now=NOW)

        created = GovernmentScheduleReconciler(service).reconcile("child-1", 3, [polio_schedule()], now=NOW)

        assert [r.name for r in created] == ["Polio - Dose 1", "Polio - Dose 2", "Polio - Dose 3"]

    def test_other_users_reminders_do_not_match(self, test_db: Session):
        reconciler = GovernmentScheduleReconciler(ReminderService(test_db))
        reconciler.reconcile("child-1", 3, [polio_schedule()], now=NOW)

        created = reconciler.reconcile("child-2", 3, [polio_schedule()], now=NOW)

        assert len(created) == 4

    def test_existing_reminders_are_not_modified(self, test_db: Session):
        service = ReminderService(test_db)
        reconciler = GovernmentScheduleReconciler(service)
        first = reconciler.reconcile("child-1", 3, [polio_schedule()], now=NOW)
        service.update(first[0].id, {"scheduledDate": "2025-01-20"}, now=NOW)

        reconciler.reconcile("child-1", 3, [polio_schedule()], now=NOW)

        assert service.get(first[0].id).scheduled_date == date(2025, 1, 20)

    def test_schedule_not_applicable_past_max_age(self, test_db: Session):
        reconciler = GovernmentScheduleReconciler(ReminderService(test_db))

        assert reconciler.reconcile("adult-1", 73, [polio_schedule()], now=NOW) == []

    def test_default_schedule(self, test_db: Session):
        reconciler = GovernmentScheduleReconciler(ReminderService(test_db))

        created = reconciler.reconcile("child-1", 0, now=NOW)

        expected = sum(
            len(vaccine["doses"]) for vaccine in STANDARD_VACCINES.values() if vaccine["category"] == "routine"
        )
        assert len(created) == expected
        assert "Hepatitis B - Dose 1" in {r.name for r in created}
        assert not any("COVID" in r.name for r in created)


class TestApplicability:
    """Test cases for schedule applicability."""

    def test_default_upper_bound(self):
        assert is_schedule_applicable(polio_schedule(), 72)
        assert not is_schedule_applicable(polio_schedule(), 73)

    def test_explicit_bounds(self):
        schedule = polio_schedule(min_age_months=12, max_age_months=24)
        assert not is_schedule_applicable(schedule, 11)
        assert is_schedule_applicable(schedule, 12)
        assert is_schedule_applicable(schedule, 24)
        assert not is_schedule_applicable(schedule, 25)


class TestMatchesDose:
    """Test cases for dose matching."""

    def test_name_and_dose(self):
        reminder = Reminder(name="Polio - Dose 2", description="")
        assert matches_dose(reminder, "Polio", 2)
        assert not matches_dose(reminder, "Polio", 1)
        assert not matches_dose(reminder, "MMR", 2)

    def test_dose_in_description(self):
        reminder = Reminder(name="POLIO shot", description="Dose 3 of the primary series")
        assert matches_dose(reminder, "Polio", 3)

    def test_dose_number_is_not_a_prefix_match(self):
        reminder = Reminder(name="Polio - Dose 12", description="")
        assert not matches_dose(reminder, "Polio", 1)


def test_default_schedule_is_routine_only():
    names = {schedule.vaccine_name for schedule in default_government_schedule()}
    assert names == {"Polio", "MMR", "Tetanus", "Hepatitis B"}
    assert all(schedule.mandatory for schedule in default_government_schedule())
