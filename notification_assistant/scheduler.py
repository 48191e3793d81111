"""Reminder scheduling: arms one timer per reminder at event time minus the lead."""

import logging
import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from .config import SchedulerConfig
from .models import EventType, Reminder
from .notifier import NotificationPoster
from .repository import ReminderRepository
from .timer_service import TimerService

logger = logging.getLogger(__name__)


class ReminderState(Enum):
    """Lifecycle of a single reminder's timer."""

    UNSCHEDULED = "unscheduled"
    ARMED = "armed"
    FIRED = "fired"
    SNOOZED = "snoozed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def timer_key(reminder_id: str) -> str:
    return f"reminder:{reminder_id}"


def snooze_key(reminder_id: str) -> str:
    return f"reminder:{reminder_id}:snooze"


def build_payload(
    reminder_id: str,
    title: str,
    description: str,
    event_time: datetime,
    event_type: EventType,
    is_snooze: bool = False,
) -> Dict[str, Any]:
    """Timer payload handed back to the delivery handler when a timer fires."""
    return {
        "reminder_id": reminder_id,
        "title": title,
        "description": description,
        "event_time": event_time.isoformat(),
        "event_type": event_type.name,
        "is_snooze": is_snooze,
    }


class ReminderScheduler:
    """
    Owns the timers behind confirmed reminders.

    Notify time is always event_time - lead. Reminders whose notify time has
    already passed are never armed. A snooze gets its own key so it never
    collides with the primary timer.
    """

    def __init__(
        self,
        timers: TimerService,
        reminders: Optional[ReminderRepository] = None,
        config: Optional[SchedulerConfig] = None,
        poster: Optional[NotificationPoster] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.timers = timers
        self.reminders = reminders
        self.config = config or SchedulerConfig()
        self.poster = poster
        self.clock = clock
        self._lock = threading.Lock()
        self._states: Dict[str, ReminderState] = {}
        self._payloads: Dict[str, Dict[str, Any]] = {}

    @property
    def lead(self) -> timedelta:
        return timedelta(minutes=self.config.lead_minutes)

    def state(self, reminder_id: str) -> ReminderState:
        with self._lock:
            return self._states.get(reminder_id, ReminderState.UNSCHEDULED)

    def _set_state(self, reminder_id: str, state: ReminderState) -> None:
        with self._lock:
            self._states[reminder_id] = state

    def schedule(self, reminder: Reminder) -> bool:
        """
        Arm the notification timer for a reminder.

        Returns:
            True if a timer was armed, False if the notify time has passed or
            arming failed.
        """
        notify_at = reminder.event_time - self.lead
        now = self.clock()
        if notify_at <= now:
            logger.info(f"Reminder {reminder.id} notify time {notify_at} already passed, not scheduling")
            return False

        payload = build_payload(
            reminder.id,
            reminder.title,
            reminder.description,
            reminder.event_time,
            reminder.event_type,
        )
        if not self._arm(timer_key(reminder.id), notify_at, payload):
            return False

        with self._lock:
            self._payloads[reminder.id] = payload
            self._states[reminder.id] = ReminderState.ARMED
        logger.info(f"Scheduled reminder {reminder.id} '{reminder.title}' for {notify_at}")
        return True

    def snooze(self, reminder_id: str, payload: Optional[Mapping[str, Any]] = None) -> bool:
        """
        Dismiss the delivered notification and fire again after the snooze interval.

        payload carries title, description, event time and type; when omitted
        the last armed payload or the stored reminder is used.
        """
        base = dict(payload) if payload else self._lookup_payload(reminder_id)
        if base is None:
            logger.warning(f"Cannot snooze unknown reminder {reminder_id}")
            return False
        base["reminder_id"] = reminder_id
        base["is_snooze"] = True

        if self.poster is not None:
            self.poster.cancel(reminder_id)

        fire_at = self.clock() + timedelta(minutes=self.config.snooze_minutes)
        if not self._arm(snooze_key(reminder_id), fire_at, base):
            return False

        with self._lock:
            self._payloads.setdefault(reminder_id, base)
            self._states[reminder_id] = ReminderState.SNOOZED
        logger.info(f"Snoozed reminder {reminder_id} until {fire_at}")
        return True

    def cancel(self, reminder_id: str) -> bool:
        """Cancel primary and snooze timers. Safe to call when nothing is pending."""
        cancelled = self.timers.cancel(timer_key(reminder_id))
        cancelled = self.timers.cancel(snooze_key(reminder_id)) or cancelled
        with self._lock:
            if reminder_id in self._states:
                self._states[reminder_id] = ReminderState.CANCELLED
            self._payloads.pop(reminder_id, None)
        if cancelled:
            logger.info(f"Cancelled timers for reminder {reminder_id}")
        return cancelled

    def mark_fired(self, reminder_id: str) -> None:
        self._set_state(reminder_id, ReminderState.FIRED)

    def mark_completed(self, reminder_id: str) -> None:
        self.cancel(reminder_id)
        self._set_state(reminder_id, ReminderState.COMPLETED)

    def reschedule_all(self) -> int:
        """
        Re-arm every upcoming, incomplete reminder. Used after restart since
        timers do not survive the process.

        Returns:
            Number of reminders armed.
        """
        if self.reminders is None:
            logger.warning("No reminder repository configured; nothing to reschedule")
            return 0

        try:
            upcoming = self.reminders.get_upcoming_reminders(self.clock())
        except Exception as e:
            logger.error(f"Failed to load upcoming reminders: {e}", exc_info=True)
            return 0

        armed = 0
        for reminder in upcoming:
            if reminder.is_completed:
                continue
            if self.schedule(reminder):
                armed += 1
        logger.info(f"Rescheduled {armed} of {len(upcoming)} upcoming reminders")
        return armed

    def _arm(self, key: str, fire_at: datetime, payload: Mapping[str, Any]) -> bool:
        # fire_at lets delivery tell a duplicate firing from a re-arm
        payload = dict(payload, fire_at=fire_at.isoformat())
        exact = self.timers.can_schedule_exact()
        try:
            try:
                self.timers.arm(key, fire_at, payload, exact=exact)
            except PermissionError:
                if not exact:
                    raise
                logger.warning(f"Exact timer denied for {key}, falling back to inexact")
                self.timers.arm(key, fire_at, payload, exact=False)
        except Exception as e:
            logger.error(f"Failed to arm timer {key}: {e}", exc_info=True)
            return False
        return True

    def _lookup_payload(self, reminder_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            cached = self._payloads.get(reminder_id)
        if cached is not None:
            return dict(cached)
        if self.reminders is None:
            return None
        try:
            reminder = self.reminders.get_reminder(reminder_id)
        except Exception as e:
            logger.error(f"Failed to load reminder {reminder_id}: {e}")
            return None
        if reminder is None:
            return None
        return build_payload(
            reminder.id,
            reminder.title,
            reminder.description,
            reminder.event_time,
            reminder.event_type,
        )
