"""Recurrence calculation for recurring reminders."""
from datetime import date
from dateutil.relativedelta import relativedelta
from typing import Iterator, Optional

from vaccine_reminders.models.reminder import RecurrenceType


def next_occurrence(current_date: date, pattern) -> date:
    """Calculate the next occurrence of a recurrence pattern.

    Monthly and yearly steps keep the day of month, clamped to the last day
    of the target month (Jan 31 -> Feb 29 in a leap year, Feb 29 -> Feb 28
    otherwise).

    Args:
        current_date: The date of the current occurrence
        pattern: RecurringPattern (anything with ``type`` and ``interval``)

    Returns:
        The date of the next occurrence, always after current_date
    """
    interval = pattern.interval
    recurrence_type = RecurrenceType(pattern.type)

    if recurrence_type == RecurrenceType.DAILY:
        return current_date + relativedelta(days=interval)
    if recurrence_type == RecurrenceType.WEEKLY:
        return current_date + relativedelta(weeks=interval)
    if recurrence_type == RecurrenceType.MONTHLY:
        return current_date + relativedelta(months=interval)
    return current_date + relativedelta(years=interval)


def is_within_bounds(candidate: date, pattern, occurrence_number: int) -> bool:
    """Check whether an occurrence is still allowed by the pattern's bounds.

    Args:
        candidate: Date of the occurrence being considered
        pattern: RecurringPattern with optional end_date / max_occurrences
        occurrence_number: 1-based position of the candidate in its series

    Returns:
        False once either bound has been passed
    """
    if pattern.end_date is not None and candidate > pattern.end_date:
        return False
    if pattern.max_occurrences is not None and occurrence_number > pattern.max_occurrences:
        return False
    return True


def iter_occurrences(
    start_date: date,
    pattern,
    window_start: date,
    window_end: date,
    first_occurrence_number: int = 1,
    include_start: bool = True
) -> Iterator[tuple]:
    """Yield ``(occurrence_number, date)`` pairs falling inside a window.

    Expansion stops at window_end or at the pattern's bounds, whichever
    comes first.
    """
    number = first_occurrence_number
    current = start_date
    if not include_start:
        number += 1
        current = next_occurrence(current, pattern)

    while current <= window_end and is_within_bounds(current, pattern, number):
        if current >= window_start:
            yield number, current
        number += 1
        current = next_occurrence(current, pattern)


def compute_next_due_date(scheduled_date: date, pattern) -> Optional[date]:
    """Next due date for a reminder, or None when it is not recurring."""
    if pattern is None:
        return None
    return next_occurrence(scheduled_date, pattern)
