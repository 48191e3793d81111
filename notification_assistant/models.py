"""Data models for notifications, conversations and reminders."""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


def content_hash(title: str, text: str, source_app: str) -> str:
    """Dedup key for a notification: MD5 over title, body and source app."""
    payload = f"{title}|{text}|{source_app}"
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


class SourceApp(Enum):
    """Messaging apps whose notifications are captured."""

    INSTAGRAM = ("com.instagram.android", "Instagram")
    WHATSAPP = ("com.whatsapp", "WhatsApp")
    WHATSAPP_BUSINESS = ("com.whatsapp.w4b", "WhatsApp Business")
    MESSENGER = ("com.facebook.orca", "Facebook Messenger")
    FACEBOOK = ("com.facebook.katana", "Facebook")
    SNAPCHAT = ("com.snapchat.android", "Snapchat")
    TWITTER = ("com.twitter.android", "Twitter")
    TELEGRAM = ("com.telegram.messenger", "Telegram")
    OTHER = ("", "Other")

    def __init__(self, package_name: str, display_name: str):
        self.package_name = package_name
        self.display_name = display_name

    @classmethod
    def from_package(cls, package_name: str) -> "SourceApp":
        """Map a package name to a SourceApp, OTHER when unknown."""
        for app in cls:
            if app.package_name and app.package_name == package_name:
                return app
        # Forks and lite builds keep the vendor name in the package
        lowered = (package_name or "").lower()
        if "instagram" in lowered:
            return cls.INSTAGRAM
        if "whatsapp" in lowered:
            return cls.WHATSAPP
        if "messenger" in lowered or "facebook.orca" in lowered:
            return cls.MESSENGER
        return cls.OTHER

    @property
    def supported(self) -> bool:
        return self is not SourceApp.OTHER


@dataclass(frozen=True)
class RawEvent:
    """An unprocessed notification from a messaging app."""
    source_app: str                 # package name, e.g. "com.whatsapp"
    title: str
    text: str
    posted_at: datetime
    conversation_id: str            # thread key derived by the ingress adapter
    content_hash: str
    sub_text: Optional[str] = None  # sender hint (group chats)
    reply_available: bool = False
    reply_handle: Any = None        # opaque, passed back to the reply channel
    extras: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        source_app: str,
        title: str,
        text: str,
        posted_at: datetime,
        conversation_id: str,
        **kwargs: Any,
    ) -> "RawEvent":
        return cls(
            source_app=source_app,
            title=title,
            text=text,
            posted_at=posted_at,
            conversation_id=conversation_id,
            content_hash=content_hash(title, text, source_app),
            **kwargs,
        )


@dataclass(frozen=True)
class Conversation:
    """A chat thread. display_name is always the other party, never self."""
    conversation_id: str
    source_app: str
    display_name: str
    last_message_at: datetime
    last_message_preview: str
    unread_count: int = 0


@dataclass(frozen=True)
class Message:
    """One attributed, deduplicated chat line."""
    content_hash: str
    conversation_id: str
    speaker: str
    text: str
    timestamp: datetime
    is_outgoing: bool = False
    reply_available: bool = False
    generated_reply: str = ""
    is_sent: bool = False


class EventType(Enum):
    """Reminder categories with their default color tags."""

    MEETING = ("Meeting", "#4285F4")
    WORK = ("Work", "#FBBC04")
    PERSONAL = ("Personal", "#34A853")
    HEALTH = ("Health", "#EA4335")
    SPORTS = ("Sports", "#FF6D00")
    SOCIAL = ("Social", "#9C27B0")
    REMINDER = ("Reminder", "#1BC994")
    OTHER = ("Other", "#757575")

    def __init__(self, display_name: str, color: str):
        self.display_name = display_name
        self.color = color

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["EventType"]:
        """Look up a category by name, case-insensitively. None if unknown."""
        if not value:
            return None
        return cls.__members__.get(value.strip().upper())


class ReminderSource(Enum):
    """Where a reminder came from."""

    MANUAL = "Manually Created"
    CHAT_NOTIFICATION = "From Chat Message"
    CHATBOT = "From AI Companion"
    CALENDAR_IMPORT = "Imported from Calendar"


DEFAULT_COLOR = EventType.REMINDER.color


@dataclass
class ConflictInfo:
    """An existing reminder that overlaps a candidate time slot."""
    reminder_id: str
    title: str
    event_time: datetime

    @property
    def formatted_time(self) -> str:
        return _format_clock(self.event_time)


@dataclass
class Reminder:
    """A confirmed, durable schedulable event."""
    id: str
    owner_id: str
    title: str
    event_time: datetime
    notify_at: datetime
    description: str = ""
    event_type: EventType = EventType.OTHER
    source: ReminderSource = ReminderSource.MANUAL
    conversation_id: str = ""
    is_completed: bool = False
    is_notified: bool = False
    color: str = DEFAULT_COLOR
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def formatted_time(self) -> str:
        return _format_clock(self.event_time)

    @property
    def formatted_date(self) -> str:
        return self.event_time.strftime("%a, %b %d, %Y")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "description": self.description,
            "event_time": self.event_time.isoformat(),
            "notify_at": self.notify_at.isoformat(),
            "event_type": self.event_type.name,
            "source": self.source.name,
            "conversation_id": self.conversation_id,
            "is_completed": self.is_completed,
            "is_notified": self.is_notified,
            "color": self.color,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Reminder":
        """Build a Reminder from a stored row, tolerating missing fields."""
        now = datetime.now()
        event_time = _parse_dt(data.get("event_time")) or now
        source = data.get("source") or ReminderSource.MANUAL.name
        return cls(
            id=str(data.get("id") or ""),
            owner_id=str(data.get("owner_id") or ""),
            title=data.get("title") or "",
            description=data.get("description") or "",
            event_time=event_time,
            notify_at=_parse_dt(data.get("notify_at")) or event_time,
            event_type=EventType.parse(data.get("event_type")) or EventType.OTHER,
            source=ReminderSource.__members__.get(source, ReminderSource.MANUAL),
            conversation_id=data.get("conversation_id") or "",
            is_completed=bool(data.get("is_completed", False)),
            is_notified=bool(data.get("is_notified", False)),
            color=data.get("color") or DEFAULT_COLOR,
            created_at=_parse_dt(data.get("created_at")) or now,
            updated_at=_parse_dt(data.get("updated_at")) or now,
        )


@dataclass
class DetectedReminderIntent:
    """An extracted candidate event awaiting user confirmation."""
    title: str
    description: str = ""
    detected_at: Optional[datetime] = None   # None = no usable time found
    event_type: EventType = EventType.OTHER
    confidence: float = 0.0
    source_message: str = ""
    source: ReminderSource = ReminderSource.CHAT_NOTIFICATION
    conversation_id: str = ""
    raw_datetime_text: str = ""
    has_conflict: bool = False
    conflicting_reminders: List[ConflictInfo] = field(default_factory=list)

    def formatted_datetime(self) -> str:
        if self.detected_at is None:
            return "Time not detected"
        return f"{self.detected_at.strftime('%a, %b %d')} at {_format_clock(self.detected_at)}"

    def to_reminder(
        self,
        reminder_id: str,
        owner_id: str,
        lead: timedelta,
        event_time: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Reminder:
        """Convert to a Reminder; event_time overrides the detected time."""
        now = now or datetime.now()
        when = event_time or self.detected_at or now
        return Reminder(
            id=reminder_id,
            owner_id=owner_id,
            title=self.title,
            description=self.description,
            event_time=when,
            notify_at=when - lead,
            event_type=self.event_type,
            source=self.source,
            conversation_id=self.conversation_id,
            color=self.event_type.color,
            created_at=now,
            updated_at=now,
        )


def _format_clock(value: datetime) -> str:
    # "5:00 PM" without a platform-specific no-pad directive
    return value.strftime("%I:%M %p").lstrip("0")


def _parse_dt(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None
