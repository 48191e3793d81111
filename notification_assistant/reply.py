"""AI reply generation for incoming chat messages, optionally schedule-aware."""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .config import LLMConfig
from .events import StoreEvent, StoreEventType
from .intent_detector import ReminderIntentDetector
from .llm_client import ChatMessage, LLMClient
from .models import DetectedReminderIntent, Message, Reminder, _format_clock
from .repository import ReminderRepository
from .store import ConversationStore

logger = logging.getLogger(__name__)

AVAILABILITY_KEYWORDS = [
    "free", "busy", "available", "plans", "doing anything", "occupied",
    "schedule", "time", "can you", "are you", "when", "meet", "hang out",
    "come over", "join", "tomorrow", "today", "tonight", "this weekend",
    "next week", "monday", "tuesday", "wednesday", "thursday", "friday",
    "saturday", "sunday",
]

QUESTION_CUES = [
    "?", "are you", "can you", "will you", "want to", "wanna", "let's", "shall we",
]

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

DAY_START = time(9, 0)
DAY_END = time(21, 0)
ASSUMED_EVENT_LENGTH = timedelta(hours=1)
MIN_FREE_GAP = timedelta(minutes=30)

REPLY_SYSTEM_PROMPT = """You are replying to chat messages on behalf of the user.

Write the next message the user would send in this conversation:
- Match the tone and language of the conversation
- Keep it short, like a real text message (one or two sentences)
- Do not mention that you are an assistant
- Reply with the message text only, no quotes or prefixes
"""

SCHEDULE_GUIDELINES = """
SCHEDULE CONTEXT (use this to answer availability questions):
{summary}

Response guidelines:
1. If the user is busy at the requested time, say so politely and suggest one of the free times.
2. If the user is free, confirm warmly.
3. Sound like a person checking their own calendar. Never decline without offering an alternative.
"""


def is_availability_question(message: str) -> bool:
    """True if the message asks about the user's availability, e.g. "are you free tomorrow?"."""
    lowered = message.lower()
    has_keyword = any(keyword in lowered for keyword in AVAILABILITY_KEYWORDS)
    is_question = any(cue in lowered for cue in QUESTION_CUES)
    return has_keyword and is_question


def extract_date_from_message(message: str, today: date) -> Optional[date]:
    """
    Resolve the day a message asks about.

    A bare weekday that matches today's weekday means today.
    "This weekend" resolves to the coming Saturday.
    """
    lowered = message.lower()
    if "today" in lowered or "tonight" in lowered:
        return today
    if "day after tomorrow" in lowered:
        return today + timedelta(days=2)
    if "tomorrow" in lowered:
        return today + timedelta(days=1)
    if "this weekend" in lowered:
        return today + timedelta(days=(5 - today.weekday()) % 7)
    if "next week" in lowered:
        return today + timedelta(weeks=1)
    for index, name in enumerate(WEEKDAY_NAMES):
        if name in lowered:
            return today + timedelta(days=(index - today.weekday()) % 7)
    return None


def _day_label(day: date, today: date) -> str:
    if day == today:
        return "today"
    if day == today + timedelta(days=1):
        return "tomorrow"
    return f"on {day.strftime('%A')}"


def find_free_slots(reminders: Sequence[Reminder], day: date, now: datetime) -> List[str]:
    """
    Free-time hints around a day's events. Each event is assumed to last an
    hour; a gap must be at least 30 minutes to count.
    """
    if day == now.date() and now.hour >= DAY_START.hour:
        cursor = (now + timedelta(hours=1)).replace(minute=0, second=0, microsecond=0)
    else:
        cursor = datetime.combine(day, DAY_START)

    slots = []
    busy = sorted(reminders, key=lambda r: r.event_time)
    for reminder in busy:
        if cursor < reminder.event_time - MIN_FREE_GAP:
            slots.append(f"before {_format_clock(reminder.event_time)}")
        cursor = reminder.event_time + ASSUMED_EVENT_LENGTH

    if busy:
        last_end = max(r.event_time for r in busy) + ASSUMED_EVENT_LENGTH
        if last_end < datetime.combine(day, DAY_END):
            slots.append(f"after {_format_clock(last_end)}")
    return slots


def format_schedule_summary(reminders: Sequence[Reminder], day: date, now: datetime) -> str:
    """
    Describe a day's schedule in the first person for the reply prompt.

    Args:
        reminders: Reminders on that day.
        day: The day asked about.
        now: Current time; decides "today"/"tomorrow" wording and the
            earliest free slot.

    Returns:
        A sentence listing busy times and up to two free slots.
    """
    label = _day_label(day, now.date())
    if not reminders:
        label = label[3:] if label.startswith("on ") else label
        return f"I have no scheduled events {label}, so I'm completely free! Any time works for me."

    busy = sorted(reminders, key=lambda r: r.event_time)
    summary = "I have " + " and ".join(f"{r.title} at {_format_clock(r.event_time)}" for r in busy)
    summary += f" {label}"

    slots = find_free_slots(busy, day, now)
    if slots:
        summary += ". But I'm free " + " or ".join(slots[:2]) + " - we could adjust to those times if needed!"
    return summary


def build_persona_block(persona: Optional[Mapping[str, Any]]) -> str:
    """Render persona attributes as "- Key: value" lines."""
    if not persona:
        return ""
    lines = ["User Persona:"]
    for key, value in persona.items():
        label = key.replace("_", " ")
        lines.append(f"- {label[:1].upper()}{label[1:]}: {value}")
    return "\n".join(lines) + "\n"


def build_reply_messages(
    history: Sequence[Message],
    persona_block: str = "",
    schedule_summary: str = "",
) -> List[ChatMessage]:
    """
    Turn stored conversation lines into dialogue turns.

    Incoming lines become "user" turns prefixed with the speaker, outgoing
    lines become "assistant" turns, and a stored generated reply adds an
    extra "assistant" turn after its message.
    """
    system = REPLY_SYSTEM_PROMPT
    if persona_block:
        system += "\n" + persona_block
    if schedule_summary:
        system += SCHEDULE_GUIDELINES.format(summary=schedule_summary)

    messages = [ChatMessage("system", system)]
    for message in history:
        if message.is_outgoing:
            messages.append(ChatMessage("assistant", message.text))
        else:
            messages.append(ChatMessage("user", f"{message.speaker}: {message.text}"))
            if message.generated_reply:
                messages.append(ChatMessage("assistant", message.generated_reply))
    return messages


class ReplyChannel(ABC):
    """Sends a reply back through the app a notification came from."""

    @abstractmethod
    def send_reply(self, handle: Any, text: str) -> bool:
        pass


@dataclass
class ReplyResult:
    content_hash: str
    reply: str = ""
    intent: Optional[DetectedReminderIntent] = None
    schedule_aware: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and bool(self.reply)


class ReplyGenerator:
    """Generates, stores and sends replies for messages in the conversation store."""

    def __init__(
        self,
        store: ConversationStore,
        llm_client: Optional[LLMClient],
        config: Optional[LLMConfig] = None,
        reminders: Optional[ReminderRepository] = None,
        detector: Optional[ReminderIntentDetector] = None,
        channel: Optional[ReplyChannel] = None,
        persona: Optional[Mapping[str, Any]] = None,
        max_context: int = 10,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.llm_client = llm_client
        self.config = config or LLMConfig()
        self.reminders = reminders
        self.detector = detector
        self.channel = channel
        self.persona = dict(persona or {})
        self.max_context = max_context
        self.clock = clock
        self._lock = threading.Lock()
        self._handles: Dict[str, Any] = {}
        store.subscribe(self._on_store_event)

    def register_handle(self, content_hash: str, handle: Any) -> None:
        with self._lock:
            self._handles[content_hash] = handle

    def _on_store_event(self, event: StoreEvent) -> None:
        # Handles live only as long as their message does
        if event.type is StoreEventType.MESSAGE_DELETED:
            with self._lock:
                self._handles.pop(event.message_hash, None)
        elif event.type is StoreEventType.CONVERSATION_DELETED:
            with self._lock:
                stale = [h for h in self._handles if self.store.get_message(h) is None]
                for content_hash in stale:
                    del self._handles[content_hash]

    def generate(self, content_hash: str) -> ReplyResult:
        """
        Generate and store a reply for one incoming message.

        Blocks on the language model; call from a worker thread.
        """
        message = self.store.get_message(content_hash)
        if message is None:
            return ReplyResult(content_hash, error="Message not found")
        if self.llm_client is None:
            return ReplyResult(content_hash, error="No language model configured")

        schedule_summary = self._schedule_context(message.text)
        history = self.store.get_conversation_context(message.conversation_id, self.max_context)
        messages = build_reply_messages(history, build_persona_block(self.persona), schedule_summary)

        try:
            reply = self.llm_client.chat(messages, self.config.max_tokens, self.config.temperature)
        except Exception as e:
            logger.error(f"AI reply generation failed: {e}")
            return ReplyResult(content_hash, error=str(e))

        reply = reply.strip()
        if not reply:
            return ReplyResult(content_hash, error="Empty reply")
        self.store.update_generated_reply(content_hash, reply)
        logger.info(f"AI reply generated for {message.speaker}: {reply[:100]}")

        result = ReplyResult(content_hash, reply=reply, schedule_aware=bool(schedule_summary))
        if schedule_summary and self.detector is not None:
            try:
                result.intent = self.detector.detect_for_message(self.store, message)
            except Exception as e:
                logger.warning(f"Reminder detection after reply failed: {e}")
        return result

    def send_reply(self, content_hash: str) -> bool:
        """Send the stored reply through the reply channel; marks it sent on success."""
        message = self.store.get_message(content_hash)
        if message is None or not message.generated_reply:
            logger.warning(f"No generated reply to send for {content_hash}")
            return False
        if message.is_sent:
            return True
        with self._lock:
            handle = self._handles.get(content_hash)
        if self.channel is None or handle is None:
            logger.warning(f"No reply channel available for {content_hash}")
            return False

        try:
            sent = self.channel.send_reply(handle, message.generated_reply)
        except Exception as e:
            logger.error(f"Failed to send reply: {e}")
            return False
        if sent:
            self.store.mark_sent(content_hash)
            with self._lock:
                self._handles.pop(content_hash, None)
        return sent

    def _schedule_context(self, text: str) -> str:
        if self.reminders is None or not is_availability_question(text):
            return ""
        now = self.clock()
        day = extract_date_from_message(text, now.date())
        if day is None:
            return ("The message asks about availability but doesn't name a day. "
                    "Respond naturally and ask what day or time they have in mind.")
        try:
            reminders = self.reminders.get_reminders_for_date(day)
        except Exception as e:
            logger.error(f"Failed to fetch schedule for {day}: {e}")
            return ""
        logger.debug(f"Found {len(reminders)} events on {day}")
        return format_schedule_summary(reminders, day, now)
