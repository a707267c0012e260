"""Scheduler and background tasks package."""
from vaccine_reminders.scheduler.dispatch_scheduler import (
    DispatchScheduler,
    run_dispatch_tick
)

__all__ = [
    'DispatchScheduler',
    'run_dispatch_tick'
]
