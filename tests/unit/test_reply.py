from datetime import date, datetime, timedelta

import pytest

from conftest import NOW, FakeLLM, FakeReminderRepository, make_event, make_reminder
from notification_assistant.config import StoreConfig
from notification_assistant.intent_detector import ReminderIntentDetector
from notification_assistant.models import EventType
from notification_assistant.reply import (
    ReplyChannel,
    ReplyGenerator,
    build_persona_block,
    build_reply_messages,
    extract_date_from_message,
    find_free_slots,
    format_schedule_summary,
    is_availability_question,
)
from notification_assistant.store import ConversationStore

TODAY = NOW.date()  # Tuesday


class RecordingChannel(ReplyChannel):
    def __init__(self, result=True):
        self.result = result
        self.sent = []

    def send_reply(self, handle, text):
        self.sent.append((handle, text))
        return self.result


@pytest.mark.parametrize("text, expected", [
    ("are you free tomorrow?", True),
    ("wanna hang out tonight", True),
    ("I was busy yesterday", False),
    ("what's up?", False),
])
def test_is_availability_question(text, expected):
    assert is_availability_question(text) is expected


@pytest.mark.parametrize("text, expected", [
    ("free tonight?", TODAY),
    ("what about tomorrow", TODAY + timedelta(days=1)),
    ("day after tomorrow?", TODAY + timedelta(days=2)),
    ("this weekend?", date(2026, 3, 14)),
    ("next week maybe", TODAY + timedelta(weeks=1)),
    ("friday?", date(2026, 3, 13)),
    ("tuesday?", TODAY),
    ("sometime", None),
])
def test_extract_date_from_message(text, expected):
    assert extract_date_from_message(text, TODAY) == expected


def test_schedule_summary_when_free():
    summary = format_schedule_summary([], TODAY + timedelta(days=1), NOW)

    assert summary == "I have no scheduled events tomorrow, so I'm completely free! Any time works for me."


def test_schedule_summary_lists_busy_times_and_free_slots():
    day = date(2026, 3, 12)
    reminders = [
        make_reminder("a", datetime(2026, 3, 12, 11, 0), title="Standup"),
        make_reminder("b", datetime(2026, 3, 12, 15, 0), title="Dentist"),
    ]

    summary = format_schedule_summary(reminders, day, NOW)

    assert summary.startswith("I have Standup at 11:00 AM and Dentist at 3:00 PM on Thursday")
    assert "before 11:00 AM or before 3:00 PM" in summary


def test_free_slots_today_start_an_hour_from_now():
    # Now is 12:00, so the day is considered to start at 13:00
    reminders = [make_reminder("a", datetime(2026, 3, 10, 13, 15))]

    assert find_free_slots(reminders, TODAY, NOW) == ["after 2:15 PM"]


def test_no_slot_after_late_event():
    reminders = [make_reminder("a", datetime(2026, 3, 12, 20, 30))]

    assert find_free_slots(reminders, date(2026, 3, 12), NOW) == ["before 8:30 PM"]


def test_persona_block():
    block = build_persona_block({"name": "Jane", "favorite_sport": "futsal"})

    assert block == "User Persona:\n- Name: Jane\n- Favorite sport: futsal\n"
    assert build_persona_block(None) == ""


def test_reply_messages_map_roles(store):
    store.ingest(make_event(title="Alex", text="hey", posted_at=NOW))
    store.ingest(make_event(title="You", text="yo", posted_at=NOW + timedelta(minutes=1)))
    latest = make_event(title="Alex", text="dinner?", posted_at=NOW + timedelta(minutes=2))
    store.ingest(latest)
    store.update_generated_reply(latest.content_hash, "sure, where?")

    messages = build_reply_messages(store.get_messages("com.whatsapp_alex"))

    assert [m.role for m in messages] == ["system", "user", "assistant", "user", "assistant"]
    assert messages[1].content == "Alex: hey"
    assert messages[2].content == "yo"
    assert messages[4].content == "sure, where?"


@pytest.fixture
def generator_parts(store, clock, llm_config):
    def _make(llm, reminders=None, detector=None, channel=None):
        return ReplyGenerator(store, llm, llm_config, reminders=reminders, detector=detector,
                              channel=channel, persona={"name": "Jane"}, clock=clock)
    return _make


def test_generate_stores_reply(store, generator_parts):
    event = make_event(title="Alex", text="how was your day")
    store.ingest(event)
    llm = FakeLLM(["  Pretty good, you?  "])

    result = generator_parts(llm).generate(event.content_hash)

    assert result.success
    assert result.reply == "Pretty good, you?"
    assert result.schedule_aware is False
    assert store.get_message(event.content_hash).generated_reply == "Pretty good, you?"
    assert "User Persona" in llm.calls[0][0].content


def test_generate_reports_model_failure(store, generator_parts):
    event = make_event(text="hi")
    store.ingest(event)

    result = generator_parts(FakeLLM(error=RuntimeError("rate limited"))).generate(event.content_hash)

    assert result.success is False
    assert "rate limited" in result.error
    assert store.get_message(event.content_hash).generated_reply == ""


def test_generate_for_missing_message(generator_parts):
    assert generator_parts(FakeLLM(["x"])).generate("nope").error == "Message not found"


def test_schedule_aware_reply_includes_schedule_and_detects_intent(store, generator_parts, clock):
    reminders = FakeReminderRepository([make_reminder("a", datetime(2026, 3, 11, 17, 0), title="Gym")])
    detector = ReminderIntentDetector(None, reminders, clock=clock)
    event = make_event(title="Alex", text="are you free tomorrow at 5pm? let's meet")
    store.ingest(event)
    llm = FakeLLM(["I'm at the gym at 5, how about 7?"])

    try:
        result = generator_parts(llm, reminders=reminders, detector=detector).generate(event.content_hash)
    finally:
        detector.close()

    assert result.schedule_aware is True
    assert "Gym at 5:00 PM tomorrow" in llm.calls[0][0].content
    assert result.intent is not None
    assert result.intent.detected_at == datetime(2026, 3, 11, 17, 0)
    assert result.intent.has_conflict is True
    assert result.intent.event_type is EventType.SOCIAL


def test_send_reply_marks_sent(store, generator_parts):
    event = make_event(text="ping")
    store.ingest(event)
    channel = RecordingChannel()
    generator = generator_parts(FakeLLM(["pong"]), channel=channel)
    generator.register_handle(event.content_hash, "handle-1")
    generator.generate(event.content_hash)

    assert generator.send_reply(event.content_hash) is True
    assert channel.sent == [("handle-1", "pong")]
    assert store.get_message(event.content_hash).is_sent is True


def test_send_reply_failure_leaves_message_unsent(store, generator_parts):
    event = make_event(text="ping")
    store.ingest(event)
    generator = generator_parts(FakeLLM(["pong"]), channel=RecordingChannel(result=False))
    generator.register_handle(event.content_hash, "handle-1")
    generator.generate(event.content_hash)

    assert generator.send_reply(event.content_hash) is False
    assert store.get_message(event.content_hash).is_sent is False


def test_send_reply_without_handle(store, generator_parts):
    event = make_event(text="ping")
    store.ingest(event)
    generator = generator_parts(FakeLLM(["pong"]), channel=RecordingChannel())
    generator.generate(event.content_hash)

    assert generator.send_reply(event.content_hash) is False


def test_handle_is_dropped_when_its_message_is_evicted(clock, llm_config):
    store = ConversationStore(StoreConfig(max_notifications=500, max_messages_per_conversation=1))
    generator = ReplyGenerator(store, FakeLLM([]), llm_config, channel=RecordingChannel(), clock=clock)
    first = make_event(text="first", posted_at=NOW)
    second = make_event(text="second", posted_at=NOW + timedelta(minutes=1))
    store.ingest(first)
    generator.register_handle(first.content_hash, "handle-1")

    store.ingest(second)
    generator.register_handle(second.content_hash, "handle-2")

    assert generator._handles == {second.content_hash: "handle-2"}


def test_handles_are_dropped_with_their_conversation(store, generator_parts):
    alex = make_event(title="Alex", text="hi", conversation_id="alex")
    sam = make_event(title="Sam", text="yo", conversation_id="sam")
    generator = generator_parts(FakeLLM([]), channel=RecordingChannel())
    for event in (alex, sam):
        store.ingest(event)
        generator.register_handle(event.content_hash, f"handle-{event.conversation_id}")

    store.delete_conversation("alex")

    assert generator._handles == {sam.content_hash: "handle-sam"}
