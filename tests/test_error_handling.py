"""
Tests for error handling in the reminder engine.

Covers the error envelope, error-code mapping and transaction rollback.
"""
import pytest
from datetime import date, time
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from vaccine_reminders.api.reminders import error_status
from vaccine_reminders.exceptions import (
    ReminderEngineError,
    ValidationError,
    MissingFieldError,
    InvalidRecurrenceError,
    InconsistentRecurrenceError,
    InvalidStatusTransitionError,
    ResourceNotFoundError,
    ConcurrencyConflictError,
    DeliveryError,
    format_error_for_api
)
from vaccine_reminders.models.reminder import Reminder
from vaccine_reminders.services.reminder_service import ReminderService


class TestCustomExceptions:
    """Test custom exception classes."""

    def test_validation_error(self):
        error = ValidationError("Bad input", details={"field": "name"})

        assert error.message == "Bad input"
        assert error.error_code == "VALIDATION_ERROR"
        assert error.details == {"field": "name"}
        assert str(error) == "Bad input"

    def test_missing_field_error(self):
        error = MissingFieldError("scheduledDate")

        assert error.error_code == "MISSING_FIELD"
        assert "scheduledDate" in error.message
        assert error.details["field_name"] == "scheduledDate"
        assert isinstance(error, ValidationError)

    def test_invalid_recurrence_error(self):
        error = InvalidRecurrenceError("interval must be positive", {"type": "weekly", "interval": 0})

        assert error.error_code == "INVALID_RECURRENCE"
        assert error.details["pattern"]["interval"] == 0

    def test_inconsistent_recurrence_error(self):
        assert "must have" in InconsistentRecurrenceError(True).message
        assert "non-recurring" in InconsistentRecurrenceError(False).message
        assert InconsistentRecurrenceError(True).error_code == "INCONSISTENT_RECURRENCE"

    def test_invalid_status_transition_error(self):
        error = InvalidStatusTransitionError("completed", "complete")

        assert error.error_code == "INVALID_STATUS_TRANSITION"
        assert error.message == "Cannot complete a reminder that is already completed."

    def test_resource_not_found_error(self):
        error = ResourceNotFoundError("reminder", "abc")

        assert error.error_code == "RESOURCE_NOT_FOUND"
        assert "Reminder" in error.message
        assert "abc" in error.message

    def test_concurrency_conflict_error(self):
        error = ConcurrencyConflictError("abc", 5.0)

        assert error.error_code == "CONCURRENCY_CONFLICT"
        assert error.details["timeout_seconds"] == 5.0

    def test_delivery_error(self):
        error = DeliveryError("sms", "timeout")

        assert error.channel == "sms"
        assert error.reason == "timeout"
        assert error.error_code == "DELIVERY_FAILURE"


class TestErrorFormatting:
    """Test the API error envelope."""

    def test_format_error_for_api(self):
        result = format_error_for_api(MissingFieldError("name"))

        assert result == {
            "success": False,
            "error": {
                "code": "MISSING_FIELD",
                "message": "name is required.",
                "details": {"field_name": "name"}
            }
        }

    def test_empty_details_default(self):
        assert ReminderEngineError("x", "X").to_dict()["error"]["details"] == {}

    @pytest.mark.parametrize("error,status", [
        (ResourceNotFoundError("reminder", "abc"), 404),
        (ConcurrencyConflictError("abc", 1.0), 409),
        (MissingFieldError("name"), 400),
        (InvalidStatusTransitionError("cancelled", "cancel"), 400),
    ])
    def test_error_status(self, error, status):
        assert error_status(error) == status


class TestTransactionRollback:
    """Test that failed mutations leave no partial state."""

    def test_database_error_becomes_runtime_error(self, test_db: Session):
        service = ReminderService(test_db)

        with pytest.raises(RuntimeError, match="Failed to save reminder changes"):
            with service._transaction():
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    def test_engine_error_is_reraised_unchanged(self, test_db: Session):
        service = ReminderService(test_db)

        with pytest.raises(MissingFieldError):
            with service._transaction():
                raise MissingFieldError("name")

    def test_rollback_discards_pending_rows(self, test_db: Session):
        service = ReminderService(test_db)

        with pytest.raises(ValueError):
            with service._transaction():
                test_db.add(Reminder(
                    id="r-1",
                    user_id="user-1",
                    name="MMR",
                    scheduled_date=date(2030, 1, 1),
                    scheduled_time=time(9, 0),
                    notification_time=time(9, 0),
                    series_id="r-1"
                ))
                test_db.flush()
                raise ValueError("boom")

        assert test_db.query(Reminder).count() == 0

    def test_failed_create_writes_nothing(self, test_db: Session):
        service = ReminderService(test_db)

        with pytest.raises(ValidationError):
            service.create({
                "userId": "user-1",
                "name": "MMR",
                "scheduledDate": "2030-01-01",
                "enableNotifications": True,
                "notificationMethods": []
            })

        assert test_db.query(Reminder).count() == 0
