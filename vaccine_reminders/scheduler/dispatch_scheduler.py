"""Dispatch scheduler driving the notification dispatcher on a fixed interval."""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from typing import Optional
import logging

from vaccine_reminders.config import settings
from vaccine_reminders.database import SessionLocal
from vaccine_reminders.services.dispatcher import NotificationDispatcher, TickSummary


# Configure logging
logger = logging.getLogger(__name__)

JOB_ID = "notification_dispatch"


def run_dispatch_tick(dispatcher: NotificationDispatcher) -> Optional[TickSummary]:
    """
    Run one dispatcher tick.

    Called by the scheduler on every interval. Unexpected errors are logged
    so that the next interval still runs.
    """
    try:
        return dispatcher.tick()
    except Exception as e:
        logger.error(f"Error during notification dispatch: {str(e)}", exc_info=True)
        return None


class DispatchScheduler:
    """Process-wide timer loop for the notification dispatcher.

    Ticks never overlap: a tick still running when the next one is due
    causes that one to be skipped.
    """

    def __init__(
        self,
        dispatcher: Optional[NotificationDispatcher] = None,
        interval_seconds: Optional[int] = None
    ):
        self.dispatcher = dispatcher or NotificationDispatcher(SessionLocal)
        self.interval_seconds = interval_seconds or settings.dispatch_interval_seconds
        self.scheduler = BackgroundScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Schedule the dispatch job and start the background scheduler."""
        if self.scheduler.running:
            logger.info("Dispatch scheduler already running")
            return

        self.scheduler.add_job(
            run_dispatch_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            args=[self.dispatcher],
            id=JOB_ID,
            name="Notification Dispatch",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        logger.info(f"Dispatch scheduler configured to run every {self.interval_seconds} seconds")

        self.scheduler.start()
        logger.info("Dispatch scheduler started")

    def stop(self) -> None:
        """Stop the scheduler, waiting for a running tick to finish."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Dispatch scheduler stopped")
        else:
            logger.info("Dispatch scheduler was not running")
