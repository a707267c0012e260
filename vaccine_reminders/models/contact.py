"""UserContact model holding per-user delivery addresses."""
from sqlalchemy import Column, String, DateTime
from datetime import datetime

from vaccine_reminders.database import Base


class UserContact(Base):
    """Contact details used to address notifications to a user."""

    __tablename__ = "user_contacts"

    user_id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    whatsapp = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True)
    push_topic = Column(String(255), nullable=True)
    language = Column(String(32), nullable=False, default="english")
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    def __repr__(self) -> str:
        return f"<UserContact(user_id={self.user_id}, name={self.name})>"

    def address_for(self, channel: str):
        """Return the recipient address for a channel, or None if unknown."""
        return {
            "website": self.push_topic,
            "sms": self.phone,
            "whatsapp": self.whatsapp or self.phone,
            "email": self.email,
        }.get(channel)
