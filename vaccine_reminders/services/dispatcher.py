"""Notification dispatcher delivering due notification instances."""
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta
from math import ceil
from typing import Callable, Dict, List, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from vaccine_reminders.config import settings
from vaccine_reminders.exceptions import DeliveryError
from vaccine_reminders.models.notification import NotificationInstance, NotificationChannel, NotificationStatus
from vaccine_reminders.models.reminder import Reminder, Priority
from vaccine_reminders.services.delivery import (
    ContactDirectory,
    DatabaseContactDirectory,
    DefaultMessageRenderer,
    DeliveryChannel,
    DeliveryHints,
    MessageRenderer,
    RenderedMessage,
    build_default_channels
)
from vaccine_reminders.services.lifecycle import is_closed


# Configure logging
logger = logging.getLogger(__name__)

SUPPRESSED = "suppressed"
NO_RECIPIENT = "no_recipient"
TIMEOUT = "timeout"
UNSUPPORTED_CHANNEL = "unsupported_channel"
INTERRUPTED = "interrupted"


@dataclass
class TickSummary:
    """Counts of what one dispatcher tick did."""
    due: int = 0
    claimed: int = 0
    sent: int = 0
    failed: int = 0
    suppressed: int = 0
    recovered: int = 0


@dataclass
class _Delivery:
    instance_id: str
    channel: DeliveryChannel
    recipient: str
    message: RenderedMessage
    hints: DeliveryHints


class NotificationDispatcher:
    """Sends every due pending notification instance exactly once.

    An instance is claimed with a conditional UPDATE (pending -> dispatching)
    before its channel is called, so overlapping ticks never deliver the
    same instance twice. Outcomes are recorded as sent or failed; failed
    sends are not retried.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        channels: Optional[Dict[str, DeliveryChannel]] = None,
        contacts: Optional[ContactDirectory] = None,
        renderer: Optional[MessageRenderer] = None,
        delivery_timeout: Optional[float] = None,
        max_workers: Optional[int] = None,
        stale_after: timedelta = timedelta(minutes=15)
    ):
        """
        Initialize dispatcher.

        Args:
            session_factory: Callable returning a new database session
            channels: Delivery channel per NotificationChannel value
            contacts: Recipient lookup (defaults to the user_contacts table)
            renderer: Message renderer
            delivery_timeout: Seconds allowed for one delivery
            max_workers: Deliveries run concurrently within one tick
            stale_after: Age after which a dispatching claim is abandoned
        """
        self.session_factory = session_factory
        self.channels = channels if channels is not None else build_default_channels()
        self.contacts = contacts or DatabaseContactDirectory(session_factory)
        self.renderer = renderer or DefaultMessageRenderer()
        self.delivery_timeout = delivery_timeout or settings.delivery_timeout_seconds
        self.max_workers = max_workers or settings.dispatch_max_workers
        self.stale_after = stale_after

    def tick(self, now: Optional[datetime] = None) -> TickSummary:
        """Run one dispatch pass over all instances due at ``now``.

        Never raises because of a single instance; failures are recorded on
        the instance.
        """
        if now is None:
            now = datetime.now()

        summary = TickSummary()
        db = self.session_factory()
        try:
            summary.recovered = self._recover_stale(db, now)

            due_ids = db.execute(
                select(NotificationInstance.id).where(
                    NotificationInstance.status == NotificationStatus.PENDING,
                    NotificationInstance.scheduled_for <= now
                ).order_by(NotificationInstance.scheduled_for)
            ).scalars().all()
            summary.due = len(due_ids)

            deliveries = []
            for instance_id in due_ids:
                if not self._claim(db, instance_id, now):
                    continue
                summary.claimed += 1
                try:
                    delivery = self._prepare(db, instance_id, now, summary)
                except Exception as e:
                    logger.error(f"Failed to prepare notification {instance_id}: {e}", exc_info=True)
                    self._record(db, instance_id, NotificationStatus.FAILED, now, reason=str(e) or type(e).__name__)
                    summary.failed += 1
                    continue
                if delivery is not None:
                    deliveries.append(delivery)

            for instance_id, reason in self._deliver(deliveries):
                if reason is None:
                    self._record(db, instance_id, NotificationStatus.SENT, now)
                    summary.sent += 1
                else:
                    self._record(db, instance_id, NotificationStatus.FAILED, now, reason=reason)
                    summary.failed += 1
        finally:
            db.close()

        if summary.due or summary.recovered:
            logger.info(
                f"Dispatch tick at {now}: due={summary.due} claimed={summary.claimed} "
                f"sent={summary.sent} failed={summary.failed} suppressed={summary.suppressed}"
            )
        return summary

    def _recover_stale(self, db: Session, now: datetime) -> int:
        """Fail claims left behind by a tick that never recorded an outcome."""
        result = db.execute(
            update(NotificationInstance).where(
                NotificationInstance.status == NotificationStatus.DISPATCHING,
                NotificationInstance.attempted_at <= now - self.stale_after
            ).values(status=NotificationStatus.FAILED, failure_reason=INTERRUPTED)
        )
        db.commit()
        if result.rowcount:
            logger.warning(f"Marked {result.rowcount} abandoned notifications as failed")
        return result.rowcount

    def _claim(self, db: Session, instance_id: str, now: datetime) -> bool:
        result = db.execute(
            update(NotificationInstance).where(
                NotificationInstance.id == instance_id,
                NotificationInstance.status == NotificationStatus.PENDING
            ).values(status=NotificationStatus.DISPATCHING, attempted_at=now)
        )
        db.commit()
        return result.rowcount == 1

    def _prepare(self, db: Session, instance_id: str, now: datetime, summary: TickSummary) -> Optional[_Delivery]:
        instance = db.get(NotificationInstance, instance_id, populate_existing=True)
        if instance is None:
            logger.warning(f"Notification {instance_id} vanished after being claimed")
            return None

        reminder = db.get(Reminder, instance.reminder_id, populate_existing=True)
        if is_closed(reminder, now):
            if reminder is None:
                logger.warning(f"Reminder {instance.reminder_id} was deleted; suppressing notification {instance_id}")
            else:
                logger.warning(f"Suppressing notification {instance_id} for {reminder.status} reminder {reminder.id}")
            self._record(db, instance_id, NotificationStatus.FAILED, now, reason=SUPPRESSED)
            summary.suppressed += 1
            summary.failed += 1
            return None

        channel_name = NotificationChannel(instance.channel).value
        channel = self.channels.get(channel_name)
        if channel is None:
            logger.warning(f"No delivery channel configured for {channel_name}")
            self._record(db, instance_id, NotificationStatus.FAILED, now, reason=UNSUPPORTED_CHANNEL)
            summary.failed += 1
            return None

        recipient = self.contacts.recipient_for(instance.user_id, channel_name)
        if not recipient:
            logger.warning(f"User {instance.user_id} has no {channel_name} address; notification {instance_id} failed")
            self._record(db, instance_id, NotificationStatus.FAILED, now, reason=NO_RECIPIENT)
            summary.failed += 1
            return None

        language = self.contacts.language_for(instance.user_id)
        priority = Priority(reminder.priority)
        return _Delivery(
            instance_id=instance_id,
            channel=channel,
            recipient=recipient,
            message=self.renderer.render(reminder, now, language),
            hints=DeliveryHints(
                priority=priority.value,
                require_interaction=priority == Priority.CRITICAL and instance.offset_days == 0,
                reminder_id=reminder.id
            )
        )

    def _deliver(self, deliveries: List[_Delivery]) -> List[tuple]:
        """Run deliveries concurrently; return ``(instance_id, failure_reason)`` pairs."""
        if not deliveries:
            return []

        waves = ceil(len(deliveries) / self.max_workers)
        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="delivery")
        try:
            futures = {
                executor.submit(d.channel.send, d.recipient, d.message, d.hints, self.delivery_timeout): d
                for d in deliveries
            }
            done, not_done = wait(futures, timeout=self.delivery_timeout * waves)

            outcomes = []
            for future in done:
                delivery = futures[future]
                error = future.exception()
                if error is None:
                    outcomes.append((delivery.instance_id, None))
                elif isinstance(error, DeliveryError):
                    logger.warning(f"Delivery of {delivery.instance_id} failed: {error.reason}")
                    outcomes.append((delivery.instance_id, error.reason))
                else:
                    logger.warning(f"Delivery of {delivery.instance_id} raised {type(error).__name__}: {error}")
                    outcomes.append((delivery.instance_id, str(error) or type(error).__name__))
            for future in not_done:
                future.cancel()
                delivery = futures[future]
                logger.warning(f"Delivery of {delivery.instance_id} timed out after {self.delivery_timeout}s")
                outcomes.append((delivery.instance_id, TIMEOUT))
            return outcomes
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _record(
        self,
        db: Session,
        instance_id: str,
        status: NotificationStatus,
        now: datetime,
        reason: Optional[str] = None
    ) -> None:
        values = {"status": status, "failure_reason": reason}
        if status == NotificationStatus.SENT:
            values["sent_at"] = now
        result = db.execute(
            update(NotificationInstance).where(
                NotificationInstance.id == instance_id,
                NotificationInstance.status == NotificationStatus.DISPATCHING
            ).values(**values)
        )
        db.commit()
        if result.rowcount != 1:
            logger.warning(
                f"Notification {instance_id} changed while dispatching; outcome {status.value} not recorded"
            )
