"""Change events published by the conversation store."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Callable, Optional

from .models import Conversation, Message


class StoreEventType(Enum):
    """Mutations a subscriber can observe."""

    CONVERSATION_UPSERTED = auto()   # created, bumped, renamed or marked read
    MESSAGE_ADDED = auto()
    MESSAGE_UPDATED = auto()         # generated reply stored or marked sent
    MESSAGE_DELETED = auto()         # explicit delete or retention eviction
    CONVERSATION_DELETED = auto()


@dataclass
class StoreEvent:
    """A snapshot of one store mutation."""

    type: StoreEventType
    conversation_id: str
    conversation: Optional[Conversation] = None
    message: Optional[Message] = None
    message_hash: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def __repr__(self):
        return (
            f"StoreEvent({self.type.name}, conversation_id={self.conversation_id!r}, "
            f"message_hash={self.message_hash!r})"
        )


StoreListener = Callable[[StoreEvent], None]
