"""Confirmation, manual creation and edits of reminders."""

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Optional

from .models import DetectedReminderIntent, EventType, Reminder, ReminderSource
from .repository import ReminderRepository
from .scheduler import ReminderScheduler

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"title", "description", "event_time", "event_type"}


class ReminderService:
    """Persists reminders and keeps their timers in step with the stored state."""

    def __init__(
        self,
        reminders: ReminderRepository,
        scheduler: ReminderScheduler,
        owner_id: str = "local",
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.reminders = reminders
        self.scheduler = scheduler
        self.owner_id = owner_id
        self.clock = clock

    def confirm(
        self,
        intent: DetectedReminderIntent,
        owner_id: Optional[str] = None,
        event_time: Optional[datetime] = None,
    ) -> Optional[Reminder]:
        """
        Turn a detected intent into a saved, scheduled reminder.

        Args:
            intent: Candidate from the detector.
            owner_id: Owner of the new reminder; defaults to the service owner.
            event_time: Alternative slot chosen by the user, e.g. to avoid a conflict.

        Returns:
            The saved Reminder, or None if there is no time to schedule or
            persisting failed.
        """
        if event_time is None and intent.detected_at is None:
            logger.warning(f"Cannot confirm '{intent.title}': no event time")
            return None

        reminder = intent.to_reminder(
            reminder_id=str(uuid.uuid4()),
            owner_id=owner_id or self.owner_id,
            lead=self.scheduler.lead,
            event_time=event_time,
            now=self.clock(),
        )
        return self._save_and_schedule(reminder)

    def create_manual(
        self,
        title: str,
        event_time: datetime,
        description: str = "",
        event_type: EventType = EventType.OTHER,
        source: ReminderSource = ReminderSource.MANUAL,
    ) -> Optional[Reminder]:
        now = self.clock()
        reminder = Reminder(
            id=str(uuid.uuid4()),
            owner_id=self.owner_id,
            title=title,
            description=description,
            event_time=event_time,
            notify_at=event_time - self.scheduler.lead,
            event_type=event_type,
            source=source,
            color=event_type.color,
            created_at=now,
            updated_at=now,
        )
        return self._save_and_schedule(reminder)

    def update(self, reminder_id: str, **changes: Any) -> Optional[Reminder]:
        """
        Apply an edit (title, description, event_time, event_type), persist it,
        then cancel and re-arm the timer. Returns None, changing nothing, if
        the reminder is unknown or a field is not editable.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            logger.error(f"Cannot edit reminder fields: {sorted(unknown)}")
            return None

        current = self.reminders.get_reminder(reminder_id)
        if current is None:
            logger.warning(f"Cannot update unknown reminder {reminder_id}")
            return None

        if "event_type" in changes:
            changes["color"] = changes["event_type"].color
        updated = replace(current, updated_at=self.clock(), **changes)
        updated = replace(updated, notify_at=updated.event_time - self.scheduler.lead)

        try:
            self.reminders.save_reminder(updated)
        except Exception as e:
            logger.error(f"Failed to save reminder {reminder_id}: {e}", exc_info=True)
            return None

        self.scheduler.cancel(reminder_id)
        if not updated.is_completed:
            self.scheduler.schedule(updated)
        logger.info(f"Updated reminder {reminder_id}")
        return updated

    def complete(self, reminder_id: str) -> bool:
        self.scheduler.mark_completed(reminder_id)
        try:
            return self.reminders.mark_completed(reminder_id)
        except Exception as e:
            logger.error(f"Failed to complete reminder {reminder_id}: {e}")
            return False

    def _save_and_schedule(self, reminder: Reminder) -> Optional[Reminder]:
        try:
            self.reminders.save_reminder(reminder)
        except Exception as e:
            logger.error(f"Failed to save reminder '{reminder.title}': {e}", exc_info=True)
            return None
        logger.info(f"Reminder {reminder.id} created: '{reminder.title}' at {reminder.event_time}")
        self.scheduler.schedule(reminder)
        return reminder
