"""User-visible reminder notifications: Twilio SMS or console."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List

from .config import TwilioConfig

logger = logging.getLogger(__name__)

try:
    from twilio.rest import Client
    TWILIO_AVAILABLE = True
except ImportError:
    TWILIO_AVAILABLE = False
    logger.warning("Twilio library not installed. Install with: pip install twilio")

ACTION_MARK_DONE = "mark_done"
ACTION_SNOOZE = "snooze"


@dataclass
class ReminderNotification:
    """What the user sees when a reminder fires."""
    reminder_id: str
    title: str
    text: str
    details: str = ""
    actions: List[str] = field(default_factory=lambda: [ACTION_MARK_DONE, ACTION_SNOOZE])

    def render(self) -> str:
        lines = [self.title, self.text]
        if self.details:
            lines.append(self.details)
        return "\n".join(line for line in lines if line)


class NotificationPoster(ABC):
    """Posts and dismisses reminder notifications, keyed by reminder id."""

    @abstractmethod
    def post(self, notification: ReminderNotification) -> None:
        pass

    @abstractmethod
    def cancel(self, reminder_id: str) -> None:
        pass


class ConsoleNotificationPoster(NotificationPoster):
    """Writes notifications to stdout."""

    def post(self, notification: ReminderNotification) -> None:
        print(notification.render())
        print(f"  [{' | '.join(notification.actions)}]")

    def cancel(self, reminder_id: str) -> None:
        logger.debug(f"Dismissed reminder notification {reminder_id}")


class TwilioNotificationPoster(NotificationPoster):
    """Sends reminder notifications as SMS. Sent texts cannot be withdrawn."""

    def __init__(self, config: TwilioConfig):
        if not TWILIO_AVAILABLE:
            raise ImportError(
                "Twilio library not installed. Install with: pip install twilio"
            )
        self.config = config
        self.client = Client(config.account_sid, config.auth_token)

    def post(self, notification: ReminderNotification) -> None:
        """
        Send the notification text via Twilio.

        Raises:
            Exception: If SMS sending fails.
        """
        message = notification.render()
        if not message.strip():
            logger.info("Message is empty; not sending SMS.")
            return
        body = f"{message}\nMark done: notification-assistant done {notification.reminder_id}"
        try:
            message_obj = self.client.messages.create(
                body=body,
                from_=self.config.from_number,
                to=self.config.to_number
            )
            logger.info(f"Reminder SMS sent. SID: {message_obj.sid}")
            logger.debug(f"Message preview: {body[:50]}...")
        except Exception as e:
            error_str = str(e)
            if "20003" in error_str or "Authenticate" in error_str or "401" in error_str:
                logger.error(
                    "Twilio authentication failed (Error 20003). "
                    "Check TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN. "
                    f"Current Account SID (first 10 chars): {self.config.account_sid[:10]}..."
                )
            else:
                logger.error(f"Failed to send SMS: {e}")
            raise

    def cancel(self, reminder_id: str) -> None:
        logger.debug(f"SMS for reminder {reminder_id} already delivered; nothing to dismiss")
