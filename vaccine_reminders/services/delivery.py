"""Delivery channels, contact lookup and message rendering for notifications."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, Dict, Optional
import logging
import smtplib

import httpx
from sqlalchemy.orm import Session

from vaccine_reminders.config import Settings, settings as default_settings
from vaccine_reminders.exceptions import DeliveryError
from vaccine_reminders.models.contact import UserContact
from vaccine_reminders.models.notification import NotificationChannel
from vaccine_reminders.models.reminder import Reminder, Priority


# Configure logging
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedMessage:
    """Display text for one notification."""
    title: str
    body: str


@dataclass(frozen=True)
class DeliveryHints:
    """Presentation hints passed along with a message."""
    priority: str = Priority.MEDIUM.value
    require_interaction: bool = False
    reminder_id: Optional[str] = None


class DeliveryChannel(ABC):
    """A transport able to deliver a rendered message to one recipient."""

    channel: NotificationChannel

    @abstractmethod
    def send(self, recipient: str, message: RenderedMessage, hints: DeliveryHints, timeout: float) -> None:
        """Deliver a message.

        Raises:
            DeliveryError: If the transport reported a failure
        """


class PushDeliveryChannel(DeliveryChannel):
    """Website push notifications published to an ntfy-style server."""

    channel = NotificationChannel.WEBSITE

    PRIORITY_MAP = {
        Priority.LOW.value: "low",
        Priority.MEDIUM.value: "default",
        Priority.HIGH.value: "high",
        Priority.CRITICAL.value: "urgent",
    }

    def __init__(self, server_url: str, topic_prefix: str = ""):
        self.server_url = server_url.rstrip("/")
        self.topic_prefix = topic_prefix

    def _topic_url(self, topic: str) -> str:
        if self.topic_prefix:
            return f"{self.server_url}/{self.topic_prefix}-{topic}"
        return f"{self.server_url}/{topic}"

    def send(self, recipient: str, message: RenderedMessage, hints: DeliveryHints, timeout: float) -> None:
        headers = {
            "Title": message.title,
            "Priority": self.PRIORITY_MAP.get(hints.priority, "default"),
            "Tags": "syringe",
        }
        if hints.require_interaction:
            # ntfy keeps high-priority notifications on screen until dismissed
            headers["Priority"] = "max"
            headers["Tags"] = "syringe,warning"

        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(self._topic_url(recipient), content=message.body, headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise DeliveryError(self.channel.value, "timeout") from e
        except httpx.HTTPError as e:
            raise DeliveryError(self.channel.value, str(e)) from e

        logger.info(f"Sent push notification to topic {recipient}")


class GatewayDeliveryChannel(DeliveryChannel):
    """Messages posted as JSON to an HTTP messaging gateway."""

    def __init__(self, gateway_url: Optional[str], api_key: Optional[str] = None):
        self.gateway_url = gateway_url
        self.api_key = api_key

    def send(self, recipient: str, message: RenderedMessage, hints: DeliveryHints, timeout: float) -> None:
        if not self.gateway_url:
            raise DeliveryError(self.channel.value, "gateway not configured")

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {
            "to": recipient,
            "channel": self.channel.value,
            "text": f"{message.title}\n{message.body}",
            "priority": hints.priority,
        }

        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(self.gateway_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise DeliveryError(self.channel.value, "timeout") from e
        except httpx.HTTPError as e:
            raise DeliveryError(self.channel.value, str(e)) from e

        logger.info(f"Sent {self.channel.value} message to {recipient}")


class SmsDeliveryChannel(GatewayDeliveryChannel):
    channel = NotificationChannel.SMS


class WhatsAppDeliveryChannel(GatewayDeliveryChannel):
    channel = NotificationChannel.WHATSAPP


class EmailDeliveryChannel(DeliveryChannel):
    """Plain-text and HTML email over SMTP with STARTTLS."""

    channel = NotificationChannel.EMAIL

    def __init__(
        self,
        smtp_server: Optional[str],
        smtp_port: int,
        username: Optional[str],
        password: Optional[str],
        from_email: str
    ):
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.from_email = from_email

    def _build(self, recipient: str, message: RenderedMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.title
        msg["From"] = self.from_email
        msg["To"] = recipient
        msg.attach(MIMEText(message.body, "plain"))
        msg.attach(MIMEText(f"<html><body><h2>{message.title}</h2><p>{message.body}</p></body></html>", "html"))
        return msg

    def send(self, recipient: str, message: RenderedMessage, hints: DeliveryHints, timeout: float) -> None:
        if not self.smtp_server:
            raise DeliveryError(self.channel.value, "SMTP server not configured")

        msg = self._build(recipient, message)
        if hints.require_interaction:
            msg["Importance"] = "high"
            msg["X-Priority"] = "1"

        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=timeout) as server:
                server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.from_email, recipient, msg.as_string())
        except TimeoutError as e:
            raise DeliveryError(self.channel.value, "timeout") from e
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(self.channel.value, str(e)) from e

        logger.info(f"Sent email notification to {recipient}")


def build_default_channels(config: Optional[Settings] = None) -> Dict[str, DeliveryChannel]:
    """Build one delivery channel per NotificationChannel from settings."""
    config = config or default_settings
    return {
        NotificationChannel.WEBSITE.value: PushDeliveryChannel(config.push_server_url, config.push_topic_prefix),
        NotificationChannel.SMS.value: SmsDeliveryChannel(config.sms_gateway_url, config.gateway_api_key),
        NotificationChannel.WHATSAPP.value: WhatsAppDeliveryChannel(config.whatsapp_gateway_url, config.gateway_api_key),
        NotificationChannel.EMAIL.value: EmailDeliveryChannel(
            config.smtp_server,
            config.smtp_port,
            config.smtp_username,
            config.smtp_password,
            config.from_email
        ),
    }


# ----------------------------------------------------------------------
# Contact lookup
# ----------------------------------------------------------------------

class ContactDirectory(ABC):
    """Resolves a user's address on a channel."""

    @abstractmethod
    def recipient_for(self, user_id: str, channel: str) -> Optional[str]:
        """Return the address, or None if the user has none on that channel."""

    def language_for(self, user_id: str) -> str:
        return "english"


class DatabaseContactDirectory(ContactDirectory):
    """Contact lookup backed by the user_contacts table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def _load(self, user_id: str) -> Optional[UserContact]:
        db = self.session_factory()
        try:
            contact = db.get(UserContact, user_id)
            if contact is not None:
                db.expunge(contact)
            return contact
        finally:
            db.close()

    def recipient_for(self, user_id: str, channel: str) -> Optional[str]:
        contact = self._load(user_id)
        if contact is None:
            return None
        return contact.address_for(NotificationChannel(channel).value)

    def language_for(self, user_id: str) -> str:
        contact = self._load(user_id)
        if contact is None or not contact.language:
            return "english"
        return contact.language


# ----------------------------------------------------------------------
# Message rendering
# ----------------------------------------------------------------------

class MessageRenderer(ABC):
    """Turns a reminder into display text for a language."""

    @abstractmethod
    def render(self, reminder: Reminder, sent_at: datetime, language: str) -> RenderedMessage:
        """Render the message for a notification sent at ``sent_at``."""


class DefaultMessageRenderer(MessageRenderer):
    """English templates; the language argument is accepted and ignored.

    The wording is relative to when the message goes out, so a notification
    delivered late after a reschedule still tells the truth.
    """

    def render(self, reminder: Reminder, sent_at: datetime, language: str) -> RenderedMessage:
        when = reminder.scheduled_date.strftime("%Y-%m-%d")
        at = reminder.scheduled_time.strftime("%H:%M")
        days = (reminder.scheduled_date - sent_at.date()).days

        if reminder.due_datetime < sent_at:
            body = f"Your {reminder.name} was due on {when} at {at} and is now overdue"
        elif days == 0:
            body = f"Your {reminder.name} is scheduled for today at {at}"
        elif days == 1:
            body = f"Your {reminder.name} is scheduled for tomorrow ({when}) at {at}"
        else:
            body = f"Your {reminder.name} is scheduled for {when} at {at} (in {days} days)"

        if reminder.government_mandated:
            body += ". This vaccination is required by the national immunization program"

        return RenderedMessage(title=f"Vaccination Reminder: {reminder.name}", body=body)
