"""Reminder intent detection: decide whether chat text proposes an event and extract it."""

import json
import logging
import re
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import date, datetime, time
from typing import Callable, List, Optional, Sequence

from .config import DetectorConfig, LLMConfig
from .intent_rules import (
    DEFAULT_HOUR,
    DEFAULT_TITLE,
    classify_event_type,
    contains_acceptance,
    contains_reminder_trigger,
    contains_time_reference,
    extract_datetime,
    extract_event_title,
)
from .llm_client import ChatMessage, LLMClient
from .models import ConflictInfo, DetectedReminderIntent, EventType, Message, ReminderSource
from .repository import ReminderRepository

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
IntentCallback = Callable[[Optional[DetectedReminderIntent]], None]

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def build_extraction_prompt(now: datetime) -> str:
    """System prompt pinning the current date/time and the strict JSON reply shape."""
    current = now.strftime("%Y-%m-%d %H:%M")
    categories = "/".join(t.name for t in EventType)
    return f"""You are a smart reminder extraction assistant. Current date/time: {current}

Analyze the conversation/message and extract event/reminder details.

RULES:
1. Give a CONCISE, MEANINGFUL title (2-5 words) that captures the event.
   Good: "Futsal with Friends", "Team Meeting", "Doctor Appointment"
   Bad: "Event", "Meeting", "Thing to do"
2. Give a HELPFUL description: who is involved, the location, any context.
3. Resolve the date/time relative to {current}:
   "tomorrow" = next day, "tonight" = today evening,
   day names = next occurrence of that day.

Respond ONLY with JSON (no markdown, no code blocks):
{{"found": true, "title": "concise event title", "description": "helpful description", "date": "YYYY-MM-DD", "time": "HH:mm", "event_type": "{categories}", "confidence": 0.0-1.0}}

If no clear event/time is found, return: {{"found": false}}"""


def parse_reminder_json(
    raw: str,
    original_text: str,
    source: ReminderSource,
    conversation_id: str,
    now: datetime,
    default_confidence: float = 0.7,
) -> Optional[DetectedReminderIntent]:
    """
    Turn a model reply into an intent.

    Returns None (never raises) when the reply is not JSON, says
    found=false, has no date, or resolves to a time before now.
    """
    cleaned = _CODE_FENCE.sub("", raw or "").strip()
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end < start:
        logger.debug(f"No JSON object in model reply: {cleaned[:100]!r}")
        return None
    try:
        data = json.loads(cleaned[start:end + 1])
    except ValueError as e:
        logger.debug(f"Model reply is not valid JSON: {e}")
        return None
    if not isinstance(data, dict) or data.get("found") is not True:
        return None

    date_text = str(data.get("date") or "").strip()
    time_text = str(data.get("time") or "").strip()
    if not date_text:
        return None

    try:
        day = date.fromisoformat(date_text)
    except ValueError:
        day = now.date()
    try:
        clock = datetime.strptime(time_text, "%H:%M").time() if time_text else time(DEFAULT_HOUR, 0)
    except ValueError:
        clock = time(DEFAULT_HOUR, 0)

    when = datetime.combine(day, clock)
    if when < now:
        logger.debug(f"Discarding extracted time in the past: {when}")
        return None

    title = str(data.get("title") or DEFAULT_TITLE).strip() or DEFAULT_TITLE
    event_type = EventType.parse(str(data.get("event_type") or "")) or classify_event_type(title)

    try:
        confidence = float(data.get("confidence", default_confidence))
    except (TypeError, ValueError):
        confidence = default_confidence

    return DetectedReminderIntent(
        title=title,
        description=str(data.get("description") or ""),
        detected_at=when,
        event_type=event_type,
        confidence=min(max(confidence, 0.0), 1.0),
        source_message=original_text,
        source=source,
        conversation_id=conversation_id,
        raw_datetime_text=f"{date_text} {time_text}".strip(),
    )


class ReminderIntentDetector:
    """
    Two gates, then model extraction with a rule-based fallback, then a
    best-effort conflict check against reminders on the same day.
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        reminders: Optional[ReminderRepository] = None,
        config: Optional[DetectorConfig] = None,
        llm_config: Optional[LLMConfig] = None,
        clock: Clock = datetime.now,
    ):
        self.llm_client = llm_client
        self.reminders = reminders
        self.config = config or DetectorConfig()
        self.llm_config = llm_config or LLMConfig()
        self.clock = clock
        self._detect_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="intent-detect")

    def close(self) -> None:
        self._detect_executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def detect(
        self,
        message: str,
        context: Sequence[str] = (),
        source: ReminderSource = ReminderSource.CHAT_NOTIFICATION,
        conversation_id: str = "",
    ) -> Optional[DetectedReminderIntent]:
        """
        Analyze one message (plus prior lines) for a reminder-worthy event.

        Returns:
            The intent, with conflict information filled in, or None.
        """
        logger.debug(f"Analyzing message for reminder intent: {message[:100]!r}")

        lines = list(context)[-self.config.context_lines:] if self.config.context_lines > 0 else []
        full_text = "\n".join(lines + [message])

        if not contains_time_reference(full_text):
            logger.debug("No time reference found, skipping")
            return None
        if not contains_acceptance(message) and not contains_reminder_trigger(full_text):
            logger.debug("No reminder trigger or acceptance found")
            return None

        intent = self._extract_with_llm(full_text, source, conversation_id)
        if intent is None:
            intent = self._extract_rule_based(full_text, source, conversation_id)
        if intent is None:
            logger.debug("Could not extract a usable reminder intent")
            return None

        logger.info(f"Reminder intent detected: {intent.title} at {intent.detected_at}")
        return self._check_conflicts(intent)

    def detect_async(
        self,
        message: str,
        callback: IntentCallback,
        context: Sequence[str] = (),
        source: ReminderSource = ReminderSource.CHAT_NOTIFICATION,
        conversation_id: str = "",
    ) -> "Future[Optional[DetectedReminderIntent]]":
        """Run detect() on a worker thread and hand the result to callback."""

        def _run() -> Optional[DetectedReminderIntent]:
            intent = None
            try:
                intent = self.detect(message, context, source, conversation_id)
            except Exception as e:
                logger.error(f"Intent detection failed: {e}", exc_info=True)
            try:
                callback(intent)
            except Exception as e:
                logger.error(f"Intent callback failed: {e}")
            return intent

        return self._detect_executor.submit(_run)

    def detect_for_message(self, store, message: Message) -> Optional[DetectedReminderIntent]:
        """Detect using the stored conversation lines that precede message."""
        history = store.get_conversation_context(message.conversation_id, self.config.context_lines + 1)
        context = [f"{m.speaker}: {m.text}" for m in history if m.content_hash != message.content_hash]
        return self.detect(message.text, context, ReminderSource.CHAT_NOTIFICATION, message.conversation_id)

    # ------------------------------------------------------------------
    # Extraction passes
    # ------------------------------------------------------------------

    def _extract_with_llm(
        self, text: str, source: ReminderSource, conversation_id: str
    ) -> Optional[DetectedReminderIntent]:
        if self.llm_client is None:
            return None

        now = self.clock()
        messages = [
            ChatMessage("system", build_extraction_prompt(now)),
            ChatMessage("user", f'Extract reminder from: "{text}"'),
        ]
        # Each call gets its own worker; a hung request holds only that one
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="intent-llm")
        future = executor.submit(self.llm_client.chat, messages, self.llm_config.max_tokens, 0.1)
        try:
            reply = future.result(timeout=self.llm_config.timeout_seconds)
        except FutureTimeout:
            logger.warning(f"LLM extraction timed out after {self.llm_config.timeout_seconds}s")
            return None
        except Exception as e:
            logger.warning(f"LLM extraction failed: {e}")
            return None
        finally:
            executor.shutdown(wait=False)

        return parse_reminder_json(
            reply, text, source, conversation_id, now, self.config.default_llm_confidence
        )

    def _extract_rule_based(
        self, text: str, source: ReminderSource, conversation_id: str
    ) -> Optional[DetectedReminderIntent]:
        lowered = text.lower()
        now = self.clock()
        match = extract_datetime(lowered, now)
        if match is None:
            return None
        if match.when < now:
            logger.debug(f"Rule-based time {match.when} is in the past")
            return None
        return DetectedReminderIntent(
            title=extract_event_title(lowered),
            description=text[:200],
            detected_at=match.when,
            event_type=classify_event_type(text),
            confidence=self.config.rule_confidence,
            source_message=text,
            source=source,
            conversation_id=conversation_id,
            raw_datetime_text=match.raw,
        )

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def _check_conflicts(self, intent: DetectedReminderIntent) -> DetectedReminderIntent:
        """Flag reminders on the same day within the conflict window. Never raises."""
        if intent.detected_at is None or self.reminders is None:
            return intent
        try:
            existing = self.reminders.get_reminders_for_date(intent.detected_at.date())
        except Exception as e:
            logger.warning(f"Conflict check skipped, reminders unavailable: {e}")
            return intent

        target = _minute_of_day(intent.detected_at)
        window = self.config.conflict_window_minutes
        conflicts: List[ConflictInfo] = [
            ConflictInfo(reminder_id=r.id, title=r.title, event_time=r.event_time)
            for r in existing
            if abs(_minute_of_day(r.event_time) - target) < window
        ]
        intent.has_conflict = bool(conflicts)
        intent.conflicting_reminders = conflicts
        if conflicts:
            logger.info(f"Found {len(conflicts)} conflicting reminder(s) for {intent.detected_at}")
        return intent


def _minute_of_day(value: datetime) -> float:
    return value.hour * 60 + value.minute + value.second / 60
