"""NotificationInstance model for planned reminder notifications."""
from sqlalchemy import Column, String, Integer, DateTime, Enum, ForeignKey, UniqueConstraint
from datetime import datetime
import enum

from vaccine_reminders.database import Base


class NotificationChannel(str, enum.Enum):
    """Notification delivery channels."""
    WEBSITE = "website"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    EMAIL = "email"


class NotificationStatus(str, enum.Enum):
    """Notification instance status enumeration.

    DISPATCHING marks an instance claimed by a dispatcher tick whose
    delivery outcome has not been recorded yet.
    """
    PENDING = "pending"
    DISPATCHING = "dispatching"
    SENT = "sent"
    FAILED = "failed"


class NotificationInstance(Base):
    """One planned (offset, channel) notification derived from a reminder."""

    __tablename__ = "notification_instances"

    id = Column(String(255), primary_key=True)
    reminder_id = Column(String(36), ForeignKey("reminders.id"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    offset_days = Column(Integer, nullable=False)
    channel = Column(Enum(NotificationChannel), nullable=False)
    scheduled_for = Column(DateTime, nullable=False, index=True)
    status = Column(Enum(NotificationStatus), nullable=False, default=NotificationStatus.PENDING, index=True)
    attempted_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    failure_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    # No two instances of one reminder share an (offset, channel) pair
    __table_args__ = (
        UniqueConstraint('reminder_id', 'offset_days', 'channel', name='uq_reminder_offset_channel'),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationInstance(id={self.id}, channel={self.channel}, "
            f"scheduled_for={self.scheduled_for}, status={self.status})>"
        )

    @property
    def key(self) -> tuple:
        """Identity of the instance within its reminder."""
        return (self.reminder_id, self.offset_days, NotificationChannel(self.channel).value)

    @staticmethod
    def build_id(reminder_id: str, offset_days: int, channel: str) -> str:
        return f"notif_{reminder_id}_{offset_days}_{NotificationChannel(channel).value}"

    def validate(self) -> None:
        """Validate notification instance data."""
        if not self.id:
            raise ValueError("Notification ID is required")
        if not self.reminder_id:
            raise ValueError("Reminder ID is required")
        if self.offset_days is None or self.offset_days < 0:
            raise ValueError("Offset days must be non-negative")
        if not self.scheduled_for:
            raise ValueError("Scheduled time is required")
        if self.status == NotificationStatus.SENT and not self.sent_at:
            raise ValueError("Sent notifications must have a sent_at timestamp")
