from datetime import datetime, timedelta

import pytest

from conftest import NOW, FakeReminderRepository, make_reminder
from notification_assistant.models import DetectedReminderIntent, EventType, ReminderSource
from notification_assistant.reminder_service import ReminderService
from notification_assistant.scheduler import ReminderScheduler, timer_key


@pytest.fixture
def scheduler(fake_timers, fake_reminders, scheduler_config, clock):
    return ReminderScheduler(fake_timers, fake_reminders, scheduler_config, clock=clock)


@pytest.fixture
def service(fake_reminders, scheduler, clock):
    return ReminderService(fake_reminders, scheduler, owner_id="owner", clock=clock)


def _intent(**overrides):
    fields = dict(
        title="Futsal with Friends",
        description="Arena court 2",
        detected_at=datetime(2026, 3, 11, 17, 0),
        event_type=EventType.SPORTS,
        confidence=0.9,
        source=ReminderSource.CHAT_NOTIFICATION,
        conversation_id="com.whatsapp_alex",
    )
    fields.update(overrides)
    return DetectedReminderIntent(**fields)


def test_confirm_saves_and_schedules(service, fake_reminders, fake_timers):
    reminder = service.confirm(_intent())

    assert fake_reminders.get_reminder(reminder.id) is reminder
    assert reminder.notify_at == datetime(2026, 3, 11, 16, 55)
    assert reminder.color == EventType.SPORTS.color
    assert reminder.source is ReminderSource.CHAT_NOTIFICATION
    assert reminder.conversation_id == "com.whatsapp_alex"
    assert reminder.owner_id == "owner"
    assert timer_key(reminder.id) in fake_timers.armed


def test_confirm_with_alternative_time(service):
    reminder = service.confirm(_intent(has_conflict=True), event_time=datetime(2026, 3, 11, 19, 0))

    assert reminder.event_time == datetime(2026, 3, 11, 19, 0)
    assert reminder.notify_at == datetime(2026, 3, 11, 18, 55)


def test_confirm_without_time_is_refused(service, fake_reminders):
    assert service.confirm(_intent(detected_at=None)) is None
    assert fake_reminders.reminders == {}


def test_confirm_generates_unique_ids(service):
    first = service.confirm(_intent())
    second = service.confirm(_intent())

    assert first.id != second.id


def test_confirm_survives_save_failure(fake_timers, scheduler_config, clock):
    broken = FakeReminderRepository(error=RuntimeError("disk full"))
    scheduler = ReminderScheduler(fake_timers, broken, scheduler_config, clock=clock)

    assert ReminderService(broken, scheduler, clock=clock).confirm(_intent()) is None
    assert fake_timers.arm_calls == []


def test_create_manual(service, fake_timers):
    reminder = service.create_manual("Pay rent", NOW + timedelta(days=1), event_type=EventType.PERSONAL)

    assert reminder.source is ReminderSource.MANUAL
    assert reminder.color == EventType.PERSONAL.color
    assert timer_key(reminder.id) in fake_timers.armed


def test_update_moves_the_timer(service, fake_reminders, fake_timers):
    fake_reminders.save_reminder(make_reminder("r1", NOW + timedelta(hours=2)))
    service.scheduler.schedule(fake_reminders.get_reminder("r1"))

    updated = service.update("r1", event_time=NOW + timedelta(hours=5), event_type=EventType.WORK)

    assert updated.notify_at == NOW + timedelta(hours=5, minutes=-5)
    assert updated.color == EventType.WORK.color
    assert fake_reminders.get_reminder("r1").event_time == NOW + timedelta(hours=5)
    assert fake_timers.armed[timer_key("r1")]["fire_at"] == NOW + timedelta(hours=5, minutes=-5)


def test_update_unknown_reminder(service):
    assert service.update("ghost", title="x") is None


def test_update_rejects_unknown_fields_without_changing_anything(service, fake_reminders, fake_timers):
    fake_reminders.save_reminder(make_reminder("r1"))
    before = fake_reminders.get_reminder("r1")

    assert service.update("r1", owner_id="someone-else") is None

    assert fake_reminders.get_reminder("r1") is before
    assert fake_timers.cancel_calls == []


def test_complete(service, fake_reminders, fake_timers):
    fake_reminders.save_reminder(make_reminder("r1"))
    service.scheduler.schedule(fake_reminders.get_reminder("r1"))

    assert service.complete("r1") is True
    assert fake_reminders.get_reminder("r1").is_completed is True
    assert fake_timers.armed == {}
    assert service.complete("ghost") is False
