"""Custom exceptions and error handling for the vaccination reminder engine.

Every error raised to a caller of a mutating operation carries a
user-friendly message, a machine-readable code and optional details so the
API layer can render a consistent JSON envelope.
"""
from typing import Optional, Dict, Any


class ReminderEngineError(Exception):
    """Base class for engine errors with user-friendly messages."""

    def __init__(self, message: str, error_code: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize engine error.

        Args:
            message: User-friendly error message
            error_code: Machine-readable error code
            details: Optional additional error details
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary format for API responses.

        Returns:
            Dictionary with error information
        """
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationError(ReminderEngineError):
    """Error raised when input data is malformed or inconsistent."""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, error_code=error_code, details=details)


class MissingFieldError(ValidationError):
    """Error raised when a required field is missing or empty."""

    def __init__(self, field_name: str):
        """
        Initialize missing field error.

        Args:
            field_name: Name of the missing field
        """
        super().__init__(
            message=f"{field_name} is required.",
            error_code="MISSING_FIELD",
            details={"field_name": field_name}
        )


class InvalidRecurrenceError(ValidationError):
    """Error raised when a recurrence pattern is malformed."""

    def __init__(self, reason: str, pattern: Optional[Dict[str, Any]] = None):
        """
        Initialize invalid recurrence error.

        Args:
            reason: Why the pattern was rejected
            pattern: The offending pattern, if available
        """
        super().__init__(
            message=f"Invalid recurrence pattern: {reason}",
            error_code="INVALID_RECURRENCE",
            details={"reason": reason, "pattern": pattern or {}}
        )


class InconsistentRecurrenceError(ValidationError):
    """Error raised when is_recurring and recurring_pattern disagree."""

    def __init__(self, is_recurring: bool):
        if is_recurring:
            message = "A recurring reminder must have a recurrence pattern."
        else:
            message = "A recurrence pattern was given for a non-recurring reminder."
        super().__init__(
            message=message,
            error_code="INCONSISTENT_RECURRENCE",
            details={"is_recurring": is_recurring}
        )


class InvalidStatusTransitionError(ValidationError):
    """Error raised when attempting an invalid status transition."""

    def __init__(self, current_status: str, attempted_action: str):
        """
        Initialize invalid status transition error.

        Args:
            current_status: Stored status of the reminder
            attempted_action: Action that was attempted (e.g., "complete", "cancel")
        """
        super().__init__(
            message=(
                f"Cannot {attempted_action} a reminder that is already {current_status}."
            ),
            error_code="INVALID_STATUS_TRANSITION",
            details={
                "current_status": current_status,
                "attempted_action": attempted_action
            }
        )


class ResourceNotFoundError(ReminderEngineError):
    """Error raised when a requested resource is not found."""

    def __init__(self, resource_type: str, resource_id: str):
        """
        Initialize resource not found error.

        Args:
            resource_type: Type of resource (e.g., "reminder")
            resource_id: ID of the resource
        """
        super().__init__(
            message=f"{resource_type.capitalize()} not found (ID: {resource_id}).",
            error_code="RESOURCE_NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id
            }
        )


class ConcurrencyConflictError(ReminderEngineError):
    """Error raised when a per-reminder lock cannot be acquired in time.

    The caller should retry the operation.
    """

    def __init__(self, resource_id: str, timeout: float):
        super().__init__(
            message=(
                f"Another change to {resource_id} is in progress. Please retry."
            ),
            error_code="CONCURRENCY_CONFLICT",
            details={"resource_id": resource_id, "timeout_seconds": timeout}
        )


class DeliveryError(ReminderEngineError):
    """Error raised by a delivery channel when a send attempt fails.

    Recorded on the notification instance by the dispatcher, never
    propagated to API callers.
    """

    def __init__(self, channel: str, reason: str):
        super().__init__(
            message=f"Delivery over {channel} failed: {reason}",
            error_code="DELIVERY_FAILURE",
            details={"channel": channel, "reason": reason}
        )
        self.channel = channel
        self.reason = reason


def format_error_for_api(error: ReminderEngineError) -> Dict[str, Any]:
    """
    Format engine error for API response.

    Args:
        error: Engine error to format

    Returns:
        Dictionary suitable for JSON API response
    """
    return error.to_dict()
