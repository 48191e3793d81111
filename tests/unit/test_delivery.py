from datetime import datetime, timedelta

import pytest

from conftest import NOW, FakePoster, make_reminder
from notification_assistant.delivery import ReminderDelivery, build_notification
from notification_assistant.notifier import ACTION_MARK_DONE, ACTION_SNOOZE
from notification_assistant.scheduler import ReminderScheduler, ReminderState, snooze_key, timer_key


@pytest.fixture
def scheduler(fake_timers, fake_reminders, scheduler_config, fake_poster, clock):
    return ReminderScheduler(fake_timers, fake_reminders, scheduler_config, fake_poster, clock=clock)


@pytest.fixture
def delivery(fake_poster, scheduler, fake_reminders):
    return ReminderDelivery(fake_poster, scheduler, fake_reminders)


def _armed_payload(fake_timers, key):
    return fake_timers.armed[key]["payload"]


def test_build_notification_for_first_firing():
    notification = build_notification({
        "reminder_id": "r1",
        "title": "Futsal",
        "description": "With the team",
        "event_time": datetime(2026, 3, 11, 17, 0).isoformat(),
        "is_snooze": False,
    })

    assert notification.title == "⏰ Futsal"
    assert notification.text == "Coming up at 5:00 PM"
    assert "With the team" in notification.details
    assert "Wednesday, March 11" in notification.details
    assert notification.actions == [ACTION_MARK_DONE, ACTION_SNOOZE]


def test_build_notification_for_snooze():
    notification = build_notification({"reminder_id": "r1", "title": "Futsal", "is_snooze": True})

    assert notification.title == "⏰ Futsal (Snoozed)"
    assert notification.text == "Coming up soon"


def test_fire_posts_and_marks_notified(delivery, scheduler, fake_timers, fake_poster, fake_reminders):
    fake_reminders.save_reminder(make_reminder("r1"))
    scheduler.schedule(fake_reminders.get_reminder("r1"))

    assert delivery.on_fire(_armed_payload(fake_timers, timer_key("r1"))) is True

    assert [n.reminder_id for n in fake_poster.posted] == ["r1"]
    assert fake_reminders.notified == ["r1"]
    assert scheduler.state("r1") is ReminderState.FIRED


def test_duplicate_firing_is_ignored(delivery, scheduler, fake_timers, fake_poster):
    scheduler.schedule(make_reminder("r1"))
    payload = _armed_payload(fake_timers, timer_key("r1"))

    assert delivery.on_fire(payload) is True
    assert delivery.on_fire(payload) is False
    assert len(fake_poster.posted) == 1


def test_duplicate_firing_after_mark_done_is_ignored(delivery, scheduler, fake_timers, fake_poster):
    scheduler.schedule(make_reminder("r1"))
    payload = _armed_payload(fake_timers, timer_key("r1"))

    assert delivery.on_fire(payload) is True
    delivery.mark_done("r1")

    assert delivery.on_fire(payload) is False
    assert len(fake_poster.posted) == 1


def test_duplicate_firing_after_dismiss_is_ignored(delivery, scheduler, fake_timers, fake_poster):
    scheduler.schedule(make_reminder("r1"))
    payload = _armed_payload(fake_timers, timer_key("r1"))

    delivery.on_fire(payload)
    delivery.dismiss("r1")

    assert delivery.on_fire(payload) is False
    assert len(fake_poster.posted) == 1


class FlakyPoster(FakePoster):
    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    def post(self, notification) -> None:
        if self.failures:
            self.failures -= 1
            raise ConnectionError("SMS gateway unreachable")
        super().post(notification)


def test_failed_post_is_logged_and_redelivery_retries(scheduler, fake_timers, fake_reminders):
    poster = FlakyPoster(failures=1)
    delivery = ReminderDelivery(poster, scheduler, fake_reminders)
    fake_reminders.save_reminder(make_reminder("r1"))
    scheduler.schedule(fake_reminders.get_reminder("r1"))
    payload = _armed_payload(fake_timers, timer_key("r1"))

    assert delivery.on_fire(payload) is False
    assert scheduler.state("r1") is ReminderState.ARMED
    assert fake_reminders.notified == []

    assert delivery.on_fire(payload) is True
    assert [n.reminder_id for n in poster.posted] == ["r1"]
    assert fake_reminders.notified == ["r1"]


def test_snooze_then_fire_again(delivery, scheduler, fake_timers, fake_poster, clock):
    scheduler.schedule(make_reminder("r1"))
    delivery.on_fire(_armed_payload(fake_timers, timer_key("r1")))

    assert delivery.snooze("r1") is True
    snoozed = _armed_payload(fake_timers, snooze_key("r1"))
    assert delivery.on_fire(snoozed) is True

    clock.advance(minutes=10)
    assert delivery.snooze("r1") is True
    assert delivery.on_fire(_armed_payload(fake_timers, snooze_key("r1"))) is True

    assert [n.title for n in fake_poster.posted] == [
        "⏰ Team Meeting",
        "⏰ Team Meeting (Snoozed)",
        "⏰ Team Meeting (Snoozed)",
    ]


def test_mark_done_completes_and_cancels(delivery, scheduler, fake_timers, fake_poster, fake_reminders):
    fake_reminders.save_reminder(make_reminder("r1", NOW + timedelta(hours=3)))
    scheduler.schedule(fake_reminders.get_reminder("r1"))
    scheduler.snooze("r1")

    assert delivery.handle_action("r1", ACTION_MARK_DONE) is True

    assert fake_timers.armed == {}
    assert fake_reminders.get_reminder("r1").is_completed is True
    assert "r1" in fake_poster.cancelled
    assert scheduler.state("r1") is ReminderState.COMPLETED


def test_fire_without_id_is_dropped(delivery, fake_poster):
    assert delivery.on_fire({"title": "orphan"}) is False
    assert fake_poster.posted == []


def test_unknown_action(delivery):
    assert delivery.handle_action("r1", "archive") is False
