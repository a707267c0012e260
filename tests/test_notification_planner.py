"""Unit tests for notification planning."""
import pytest
from datetime import date, datetime, time
from sqlalchemy.orm import Session

from vaccine_reminders.exceptions import ValidationError
from vaccine_reminders.models.notification import NotificationInstance, NotificationStatus
from vaccine_reminders.models.reminder import Reminder, ReminderStatus
from vaccine_reminders.services.notification_planner import NotificationPlanner
from vaccine_reminders.services.reminder_service import ReminderService


CREATED = datetime(2025, 1, 1, 0, 0)


def add_reminder(db: Session, **overrides) -> Reminder:
    fields = dict(
        id="rem-1",
        user_id="user-1",
        name="Polio Dose 1",
        scheduled_date=date(2025, 3, 1),
        scheduled_time=time(9, 0),
        is_recurring=False,
        series_id="rem-1",
        occurrence_number=1,
        status=ReminderStatus.PENDING,
        enable_notifications=True,
        notification_methods=["sms"],
        advance_notification_days=[7, 1, 0],
        notification_time=time(9, 0),
        created_at=CREATED,
        updated_at=CREATED
    )
    fields.update(overrides)
    reminder = Reminder(**fields)
    db.add(reminder)
    db.commit()
    return reminder


def instance_keys(db: Session, reminder_id: str):
    return {
        (i.offset_days, i.channel.value): i.scheduled_for
        for i in db.query(NotificationInstance).filter(NotificationInstance.reminder_id == reminder_id)
    }


class TestComputeSchedule:
    """Test cases for compute_schedule."""

    def test_cross_product_of_offsets_and_channels(self, test_db: Session):
        reminder = add_reminder(test_db, notification_methods=["sms", "email"], advance_notification_days=[7, 1])
        schedule = NotificationPlanner(test_db).compute_schedule(reminder)

        assert schedule == {
            (7, "sms"): datetime(2025, 2, 22, 9, 0),
            (7, "email"): datetime(2025, 2, 22, 9, 0),
            (1, "sms"): datetime(2025, 2, 28, 9, 0),
            (1, "email"): datetime(2025, 2, 28, 9, 0),
        }

    def test_uses_time_of_day(self, test_db: Session):
        reminder = add_reminder(test_db, notification_time=time(7, 30), advance_notification_days=[2])
        schedule = NotificationPlanner(test_db).compute_schedule(reminder)
        assert schedule == {(2, "sms"): datetime(2025, 2, 27, 7, 30)}

    def test_fire_time_clamped_to_due_time(self, test_db: Session):
        """A same-day notification never fires after the reminder is due."""
        reminder = add_reminder(
            test_db,
            scheduled_time=time(8, 0),
            notification_time=time(18, 0),
            advance_notification_days=[0]
        )
        schedule = NotificationPlanner(test_db).compute_schedule(reminder)
        assert schedule == {(0, "sms"): datetime(2025, 3, 1, 8, 0)}

    def test_offsets_before_creation_are_dropped(self, test_db: Session):
        reminder = add_reminder(test_db, created_at=datetime(2025, 2, 25, 12, 0))
        schedule = NotificationPlanner(test_db).compute_schedule(reminder)
        assert set(schedule) == {(1, "sms"), (0, "sms")}

    def test_past_offsets_after_creation_are_kept(self, test_db: Session):
        """Backdated but post-creation fire times are still planned; the dispatcher sends them at once."""
        reminder = add_reminder(test_db, scheduled_date=date(2025, 1, 3), created_at=datetime(2025, 1, 1, 0, 0))
        schedule = NotificationPlanner(test_db).compute_schedule(reminder)
        assert set(schedule) == {(1, "sms"), (0, "sms")}

    def test_duplicate_offsets_and_channels_collapse(self, test_db: Session):
        reminder = add_reminder(test_db, notification_methods=["sms", "sms"], advance_notification_days=[1, 1])
        assert len(NotificationPlanner(test_db).compute_schedule(reminder)) == 1

    def test_disabled_notifications(self, test_db: Session):
        reminder = add_reminder(test_db, enable_notifications=False)
        assert NotificationPlanner(test_db).compute_schedule(reminder) == {}

    def test_empty_methods_or_offsets(self, test_db: Session):
        planner = NotificationPlanner(test_db)
        assert planner.compute_schedule(add_reminder(test_db, id="a", series_id="a", advance_notification_days=[])) == {}
        assert planner.compute_schedule(add_reminder(test_db, id="b", series_id="b", notification_methods=[])) == {}

    @pytest.mark.parametrize("status", [ReminderStatus.COMPLETED, ReminderStatus.CANCELLED])
    def test_closed_reminders_have_no_schedule(self, test_db: Session, status):
        reminder = add_reminder(test_db, status=status, completed_date=CREATED)
        assert NotificationPlanner(test_db).compute_schedule(reminder) == {}


class TestPlan:
    """Test cases for plan."""

    def test_end_to_end_three_instances(self, test_db: Session):
        reminder = add_reminder(test_db)
        planned = NotificationPlanner(test_db).plan(reminder)
        test_db.commit()

        assert [i.scheduled_for for i in planned] == [
            datetime(2025, 2, 22, 9, 0),
            datetime(2025, 2, 28, 9, 0),
            datetime(2025, 3, 1, 9, 0),
        ]
        assert all(i.status == NotificationStatus.PENDING for i in planned)
        assert planned[0].id == "notif_rem-1_7_sms"

    def test_planning_twice_is_idempotent(self, test_db: Session):
        reminder = add_reminder(test_db)
        planner = NotificationPlanner(test_db)
        first = {i.id for i in planner.plan(reminder)}
        test_db.commit()
        second = {i.id for i in planner.plan(reminder)}
        test_db.commit()

        assert first == second
        assert test_db.query(NotificationInstance).count() == 3

    def test_unchanged_instances_keep_delivery_status(self, test_db: Session):
        reminder = add_reminder(test_db)
        planner = NotificationPlanner(test_db)
        planner.plan(reminder)
        test_db.commit()

        sent = test_db.get(NotificationInstance, "notif_rem-1_7_sms")
        sent.status = NotificationStatus.SENT
        sent.sent_at = datetime(2025, 2, 22, 9, 0)
        test_db.commit()

        reminder.notification_methods = ["sms", "email"]
        planner.plan(reminder)
        test_db.commit()

        assert test_db.get(NotificationInstance, "notif_rem-1_7_sms").status == NotificationStatus.SENT
        assert test_db.get(NotificationInstance, "notif_rem-1_7_email").status == NotificationStatus.PENDING
        assert test_db.query(NotificationInstance).count() == 6

    def test_moved_instances_reset_to_pending(self, test_db: Session):
        reminder = add_reminder(test_db)
        planner = NotificationPlanner(test_db)
        planner.plan(reminder)
        test_db.commit()

        instance = test_db.get(NotificationInstance, "notif_rem-1_1_sms")
        instance.status = NotificationStatus.FAILED
        instance.failure_reason = "no_recipient"
        test_db.commit()

        reminder.scheduled_date = date(2025, 3, 10)
        planner.plan(reminder)
        test_db.commit()

        instance = test_db.get(NotificationInstance, "notif_rem-1_1_sms")
        assert instance.status == NotificationStatus.PENDING
        assert instance.failure_reason is None
        assert instance.scheduled_for == datetime(2025, 3, 9, 9, 0)

    def test_removed_pairs_are_discarded(self, test_db: Session):
        reminder = add_reminder(test_db)
        planner = NotificationPlanner(test_db)
        planner.plan(reminder)
        test_db.commit()

        reminder.advance_notification_days = [0]
        planner.plan(reminder)
        test_db.commit()

        assert set(instance_keys(test_db, "rem-1")) == {(0, "sms")}

    def test_disabling_discards_everything(self, test_db: Session):
        reminder = add_reminder(test_db)
        planner = NotificationPlanner(test_db)
        planner.plan(reminder)
        test_db.commit()

        reminder.enable_notifications = False
        assert planner.plan(reminder) == []
        test_db.commit()
        assert test_db.query(NotificationInstance).count() == 0

    def test_discard(self, test_db: Session):
        reminder = add_reminder(test_db)
        planner = NotificationPlanner(test_db)
        planner.plan(reminder)
        test_db.commit()

        assert planner.discard("rem-1") == 3
        test_db.commit()
        assert test_db.query(NotificationInstance).count() == 0

    def test_invalid_instance_is_not_stored(self, test_db: Session):
        """Rows written outside the service are still checked before planning."""
        reminder = add_reminder(test_db, advance_notification_days=[-1])

        with pytest.raises(ValidationError, match="non-negative"):
            NotificationPlanner(test_db).plan(reminder)
        test_db.rollback()

        assert test_db.query(NotificationInstance).count() == 0


def test_every_instance_fires_no_later_than_due(test_db: Session):
    service = ReminderService(test_db)
    reminder = service.create({
        "userId": "user-1",
        "name": "MMR Dose 1",
        "scheduledDate": "2025-06-01",
        "scheduledTime": "08:00",
        "notificationMethods": ["sms", "email", "website"],
        "advanceNotificationDays": [30, 7, 1, 0],
        "timeOfDay": "20:00"
    }, now=CREATED)

    instances = service.list_notifications(reminder.id)
    assert len(instances) == 12
    assert all(i.scheduled_for <= reminder.due_datetime for i in instances)
