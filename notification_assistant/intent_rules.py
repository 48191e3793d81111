"""Keyword gates, rule-based date/time extraction and category classification."""

import re
from datetime import datetime, timedelta
from typing import Iterable, List, NamedTuple, Optional, Tuple

from .models import EventType

# Temporal vocabulary for the time-reference gate
TIME_KEYWORDS = [
    "today", "tomorrow", "tonight", "morning", "afternoon", "evening", "night",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "next week", "this week", "next month", "weekend", "am", "pm", "o'clock",
]

# Scheduling triggers; "meet" and "let's" catch plain proposals ("let's meet at 5")
REMINDER_TRIGGERS = [
    "remind", "remember", "don't forget", "note down", "schedule",
    "meeting", "appointment", "call", "event", "plan", "meet", "let's",
]

ACCEPTANCE_KEYWORDS = [
    "yes", "sure", "okay", "ok", "definitely", "of course", "count me in",
    "i'll be there", "i'm in", "sounds good", "let's do it", "i would love",
    "i'd love", "perfect", "great", "absolutely",
]

# Title candidates for the rule-based pass, first match wins
TITLE_KEYWORDS = [
    "futsal", "football", "meeting", "call", "appointment", "dinner",
    "lunch", "party", "workout", "gym", "class", "lecture", "interview",
]

# Checked top to bottom; the first family with a hit decides the category
CATEGORY_KEYWORDS: List[Tuple[EventType, List[str]]] = [
    (EventType.MEETING, ["meeting", "call", "conference", "interview", "sync"]),
    (EventType.WORK, ["work", "office", "project", "deadline", "task", "report"]),
    (EventType.HEALTH, ["doctor", "hospital", "medicine", "health", "checkup", "appointment"]),
    (EventType.SPORTS, ["futsal", "football", "gym", "workout", "game", "match", "sports",
                        "cricket", "basketball"]),
    (EventType.SOCIAL, ["party", "birthday", "dinner", "lunch", "hangout", "meet", "friend"]),
    (EventType.REMINDER, ["remind", "remember", "don't forget", "note"]),
    (EventType.PERSONAL, ["personal", "home", "family"]),
]

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

DEFAULT_HOUR = 9
DEFAULT_TITLE = "Event"

_CLOCK = r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b"
EXPLICIT_TIME_PATTERN = re.compile(r"\b\d{1,2}(:\d{2})?\s*(am|pm)\b", re.IGNORECASE)
TOMORROW_PATTERN = re.compile(r"\btomorrow\s+(?:at\s+)?" + _CLOCK, re.IGNORECASE)
TODAY_PATTERN = re.compile(r"\btoday\s+(?:at\s+)?" + _CLOCK, re.IGNORECASE)
AT_PATTERN = re.compile(r"\bat\s+" + _CLOCK, re.IGNORECASE)
WEEKDAY_PATTERN = re.compile(r"\b(" + "|".join(WEEKDAYS) + r")\s+(?:at\s+)?" + _CLOCK, re.IGNORECASE)
_PRECEDING_DAY = re.compile(r"\b(" + "|".join(WEEKDAYS + ["today", "tomorrow"]) + r")\s*$", re.IGNORECASE)


SHORT_KEYWORD_LENGTH = 3


def _keyword_pattern(keywords: Iterable[str]) -> "re.Pattern[str]":
    """Keywords match at a word start, so stems cover inflections ("plan" finds "planning").

    Short tokens ("am", "ok", "yes") must be whole words, or "yesterday" would read as a yes.
    """
    alternation = "|".join(
        re.escape(k) + (r"\b" if len(k) <= SHORT_KEYWORD_LENGTH else "")
        for k in sorted(keywords, key=len, reverse=True)
    )
    return re.compile(r"\b(?:" + alternation + r")", re.IGNORECASE)


_TIME_KEYWORD_RE = _keyword_pattern(TIME_KEYWORDS)
_TRIGGER_RE = _keyword_pattern(REMINDER_TRIGGERS)
_ACCEPTANCE_RE = _keyword_pattern(ACCEPTANCE_KEYWORDS)


def contains_time_reference(text: str) -> bool:
    return bool(_TIME_KEYWORD_RE.search(text or "") or EXPLICIT_TIME_PATTERN.search(text or ""))


def contains_reminder_trigger(text: str) -> bool:
    return bool(_TRIGGER_RE.search(text or ""))


def contains_acceptance(text: str) -> bool:
    return bool(_ACCEPTANCE_RE.search(text or ""))


def classify_event_type(text: str) -> EventType:
    """Map text to a category by keyword family, in fixed priority order."""
    lowered = (text or "").lower()
    for event_type, keywords in CATEGORY_KEYWORDS:
        if any(re.search(r"\b" + re.escape(k), lowered) for k in keywords):
            return event_type
    return EventType.OTHER


def extract_event_title(text: str) -> str:
    lowered = (text or "").lower()
    for keyword in TITLE_KEYWORDS:
        if re.search(r"\b" + re.escape(keyword), lowered):
            return keyword.capitalize()
    return DEFAULT_TITLE


def adjust_hour_for_ampm(hour: int, ampm: Optional[str]) -> int:
    if ampm == "pm" and hour < 12:
        return hour + 12
    if ampm == "am" and hour == 12:
        return 0
    return hour


class TimeMatch(NamedTuple):
    """A resolved date/time and the text it was read from."""
    when: datetime
    raw: str


def _clock_from(match: "re.Match[str]", first_group: int) -> Optional[Tuple[int, int]]:
    hour_text, minute_text, ampm = match.group(first_group, first_group + 1, first_group + 2)
    hour = int(hour_text) if hour_text else DEFAULT_HOUR
    minute = int(minute_text) if minute_text else 0
    hour = adjust_hour_for_ampm(hour, ampm.lower() if ampm else None)
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def _at(day: datetime, clock: Tuple[int, int]) -> datetime:
    return day.replace(hour=clock[0], minute=clock[1], second=0, microsecond=0)


def extract_datetime(text: str, now: datetime) -> Optional[TimeMatch]:
    """
    Resolve the first recognisable date/time in text.

    Patterns are tried in order: "tomorrow at ...", "today at ...", a bare
    "at ..." (rolled to tomorrow when already past) and "<weekday> at ...".
    A bare "at" directly after a weekday is left to the weekday pattern.
    """
    match = TOMORROW_PATTERN.search(text)
    if match:
        clock = _clock_from(match, 1)
        if clock:
            return TimeMatch(_at(now + timedelta(days=1), clock), match.group(0).strip())

    match = TODAY_PATTERN.search(text)
    if match:
        clock = _clock_from(match, 1)
        if clock:
            return TimeMatch(_at(now, clock), match.group(0).strip())

    for match in AT_PATTERN.finditer(text):
        if _PRECEDING_DAY.search(text[:match.start()]):
            continue
        clock = _clock_from(match, 1)
        if not clock:
            continue
        result = _at(now, clock)
        if result < now:
            result += timedelta(days=1)
        return TimeMatch(result, match.group(0).strip())

    match = WEEKDAY_PATTERN.search(text)
    if match:
        clock = _clock_from(match, 2)
        if clock:
            target = WEEKDAYS.index(match.group(1).lower())
            days_ahead = (target - now.weekday()) % 7
            if days_ahead == 0:
                days_ahead = 7  # same weekday means next week's
            return TimeMatch(_at(now + timedelta(days=days_ahead), clock), match.group(0).strip())

    return None
