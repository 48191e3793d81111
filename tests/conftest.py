from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Mapping, Optional

import pytest

from notification_assistant.config import DetectorConfig, LLMConfig, SchedulerConfig, StoreConfig
from notification_assistant.llm_client import LLMClient
from notification_assistant.models import EventType, RawEvent, Reminder, ReminderSource
from notification_assistant.notifier import NotificationPoster
from notification_assistant.repository import ReminderRepository
from notification_assistant.store import ConversationStore
from notification_assistant.timer_service import TimerService

# A Tuesday
NOW = datetime(2026, 3, 10, 12, 0)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeLLM(LLMClient):
    def __init__(self, replies: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.replies = list(replies or [])
        self.error = error
        self.calls: List[list] = []

    def chat(self, messages, max_tokens, temperature) -> str:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        if not self.replies:
            return ""
        return self.replies.pop(0)


class FakeTimerService(TimerService):
    def __init__(self, allow_exact: bool = True, deny_exact_on_arm: bool = False):
        self.allow_exact = allow_exact
        self.deny_exact_on_arm = deny_exact_on_arm
        self.armed: Dict[str, Dict[str, Any]] = {}
        self.arm_calls: List[Dict[str, Any]] = []
        self.cancel_calls: List[str] = []

    def can_schedule_exact(self) -> bool:
        return self.allow_exact

    def arm(self, key: str, fire_at: datetime, payload: Mapping[str, Any], exact: bool = True) -> None:
        if exact and (self.deny_exact_on_arm or not self.allow_exact):
            raise PermissionError("exact alarms denied")
        entry = {"key": key, "fire_at": fire_at, "payload": dict(payload), "exact": exact}
        self.arm_calls.append(entry)
        self.armed[key] = entry

    def cancel(self, key: str) -> bool:
        self.cancel_calls.append(key)
        return self.armed.pop(key, None) is not None


class FakeReminderRepository(ReminderRepository):
    def __init__(self, reminders: Optional[List[Reminder]] = None, error: Optional[Exception] = None):
        self.reminders: Dict[str, Reminder] = {r.id: r for r in (reminders or [])}
        self.error = error
        self.completed: List[str] = []
        self.notified: List[str] = []

    def _check(self) -> None:
        if self.error is not None:
            raise self.error

    def save_reminder(self, reminder: Reminder) -> None:
        self._check()
        self.reminders[reminder.id] = reminder

    def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        self._check()
        return self.reminders.get(reminder_id)

    def get_upcoming_reminders(self, now: datetime) -> List[Reminder]:
        self._check()
        start = datetime.combine(now.date(), time.min)
        upcoming = [r for r in self.reminders.values() if r.event_time >= start and not r.is_completed]
        return sorted(upcoming, key=lambda r: r.event_time)

    def get_reminders_for_date(self, day: date) -> List[Reminder]:
        self._check()
        return sorted(
            (r for r in self.reminders.values() if r.event_time.date() == day),
            key=lambda r: r.event_time,
        )

    def mark_completed(self, reminder_id: str) -> bool:
        self._check()
        reminder = self.reminders.get(reminder_id)
        if reminder is None:
            return False
        reminder.is_completed = True
        self.completed.append(reminder_id)
        return True

    def mark_notified(self, reminder_id: str) -> bool:
        self._check()
        reminder = self.reminders.get(reminder_id)
        if reminder is None:
            return False
        reminder.is_notified = True
        self.notified.append(reminder_id)
        return True


class FakePoster(NotificationPoster):
    def __init__(self):
        self.posted = []
        self.cancelled: List[str] = []

    def post(self, notification) -> None:
        self.posted.append(notification)

    def cancel(self, reminder_id: str) -> None:
        self.cancelled.append(reminder_id)


def make_reminder(
    reminder_id: str = "r1",
    event_time: datetime = NOW + timedelta(hours=2),
    title: str = "Team Meeting",
    event_type: EventType = EventType.MEETING,
    is_completed: bool = False,
) -> Reminder:
    return Reminder(
        id=reminder_id,
        owner_id="owner",
        title=title,
        description="",
        event_time=event_time,
        notify_at=event_time - timedelta(minutes=5),
        event_type=event_type,
        source=ReminderSource.MANUAL,
        is_completed=is_completed,
        color=event_type.color,
        created_at=NOW,
        updated_at=NOW,
    )


def make_event(
    title: str = "Alex",
    text: str = "hello",
    source_app: str = "com.whatsapp",
    conversation_id: str = "com.whatsapp_alex",
    posted_at: datetime = NOW,
    **kwargs: Any,
) -> RawEvent:
    return RawEvent.create(
        source_app=source_app,
        title=title,
        text=text,
        posted_at=posted_at,
        conversation_id=conversation_id,
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store_config():
    return StoreConfig(max_notifications=500, max_messages_per_conversation=100, db_path=":memory:")


@pytest.fixture
def store(store_config):
    return ConversationStore(store_config)


@pytest.fixture
def fake_timers():
    return FakeTimerService()


@pytest.fixture
def fake_reminders():
    return FakeReminderRepository()


@pytest.fixture
def fake_poster():
    return FakePoster()


@pytest.fixture
def detector_config():
    return DetectorConfig()


@pytest.fixture
def llm_config():
    return LLMConfig(api_key="test-key", timeout_seconds=1.0)


@pytest.fixture
def scheduler_config():
    return SchedulerConfig(lead_minutes=5, snooze_minutes=10)
