"""Turns fired reminder timers into user-visible notifications."""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .models import _format_clock, _parse_dt
from .notifier import NotificationPoster, ReminderNotification
from .repository import ReminderRepository
from .scheduler import ReminderScheduler, ReminderState

logger = logging.getLogger(__name__)


def build_notification(payload: Mapping[str, Any]) -> ReminderNotification:
    """Render a timer payload as a notification with done/snooze actions."""
    reminder_id = str(payload.get("reminder_id", ""))
    title = payload.get("title") or "Reminder"
    if payload.get("is_snooze"):
        title = f"⏰ {title} (Snoozed)"
    else:
        title = f"⏰ {title}"

    event_time = _parse_dt(payload.get("event_time"))
    if event_time is not None:
        text = f"Coming up at {_format_clock(event_time)}"
        when = event_time.strftime("%A, %B %d")
    else:
        text = "Coming up soon"
        when = ""

    description = payload.get("description") or ""
    details = "\n".join(part for part in (description, when) if part)
    return ReminderNotification(reminder_id=reminder_id, title=title, text=text, details=details)


class ReminderDelivery:
    """
    Timer handler for the scheduler.

    A firing is identified by (reminder id, fire time, snooze flag). The
    same firing delivered twice is dropped, even after the notification
    was dismissed, and nothing is delivered once a reminder is completed.
    """

    def __init__(
        self,
        poster: NotificationPoster,
        scheduler: ReminderScheduler,
        reminders: Optional[ReminderRepository] = None,
    ):
        self.poster = poster
        self.scheduler = scheduler
        self.reminders = reminders
        self._lock = threading.Lock()
        self._posted: Dict[str, str] = {}
        self._payloads: Dict[str, Dict[str, Any]] = {}

    def on_fire(self, payload: Mapping[str, Any]) -> bool:
        """Post the notification for a fired timer. Returns False for duplicates."""
        reminder_id = str(payload.get("reminder_id", ""))
        if not reminder_id:
            logger.warning("Timer fired without a reminder id")
            return False

        if self.scheduler.state(reminder_id) is ReminderState.COMPLETED:
            logger.debug(f"Firing for completed reminder {reminder_id} ignored")
            return False

        token = f"{payload.get('fire_at', '')}|{bool(payload.get('is_snooze'))}"
        with self._lock:
            if self._posted.get(reminder_id) == token:
                logger.debug(f"Duplicate firing for reminder {reminder_id} ignored")
                return False
            self._posted[reminder_id] = token
            self._payloads[reminder_id] = dict(payload)

        try:
            self.poster.post(build_notification(payload))
        except Exception as e:
            logger.error(f"Failed to post reminder {reminder_id}: {e}")
            with self._lock:
                # Let a redelivery of this firing try again
                if self._posted.get(reminder_id) == token:
                    del self._posted[reminder_id]
            return False

        self.scheduler.mark_fired(reminder_id)
        logger.info(f"Delivered reminder {reminder_id}")

        if self.reminders is not None:
            try:
                self.reminders.mark_notified(reminder_id)
            except Exception as e:
                logger.warning(f"Could not mark reminder {reminder_id} notified: {e}")
        return True

    def dismiss(self, reminder_id: str) -> None:
        self.poster.cancel(reminder_id)

    def mark_done(self, reminder_id: str) -> bool:
        """Terminal action: dismiss, stop all timers, mark the reminder completed."""
        self.dismiss(reminder_id)
        with self._lock:
            self._payloads.pop(reminder_id, None)
        self.scheduler.mark_completed(reminder_id)
        if self.reminders is None:
            return True
        try:
            return self.reminders.mark_completed(reminder_id)
        except Exception as e:
            logger.warning(f"Could not mark reminder {reminder_id} completed: {e}")
            return False

    def snooze(self, reminder_id: str) -> bool:
        with self._lock:
            payload = self._payloads.get(reminder_id)
        return self.scheduler.snooze(reminder_id, payload)

    def handle_action(self, reminder_id: str, action: str) -> bool:
        """Dispatch a notification action name ("mark_done" or "snooze")."""
        if action == "mark_done":
            return self.mark_done(reminder_id)
        if action == "snooze":
            return self.snooze(reminder_id)
        logger.warning(f"Unknown reminder action: {action}")
        return False
