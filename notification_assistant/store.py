"""In-memory conversation store: dedup, attribution, threading and retention."""

import logging
import re
import threading
from collections import OrderedDict
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from .attribution import UNKNOWN_DISPLAY_NAME, resolve
from .config import StoreConfig
from .events import StoreEvent, StoreEventType, StoreListener
from .models import Conversation, Message, RawEvent

logger = logging.getLogger(__name__)

# Platform digests ("4 messages", "2 new messages from Alex",
# "3 messages from 2 chats"). Matched against the whole lowered body.
SUMMARY_PATTERNS = [
    re.compile(r"\d+\s+(new\s+)?messages?"),
    re.compile(r"\d+\s+new\s+messages?\s+from.*", re.DOTALL),
    re.compile(r"\d+\s+(new\s+)?messages?\s+from\s+\d+\s+chats?"),
]


def is_summary_notification(text: str) -> bool:
    """True if the body is an aggregate digest rather than a real message."""
    lowered = (text or "").strip().lower()
    return any(pattern.fullmatch(lowered) for pattern in SUMMARY_PATTERNS)


class ConversationStore:
    """
    Owns the conversations and messages tables for one session.

    Every public method takes the same lock, so the dedup check and the
    insert in ingest() are atomic. Change events are published while the
    lock is still held, so listeners see mutations in the order they were
    applied. Listeners must return quickly and must not block on another
    thread that uses the store.
    """

    def __init__(self, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig()
        self._lock = threading.RLock()
        # Most recently active conversation first
        self._conversations: "OrderedDict[str, Conversation]" = OrderedDict()
        # Arrival order, oldest first; drives global eviction
        self._messages: "OrderedDict[str, Message]" = OrderedDict()
        self._by_conversation: Dict[str, List[str]] = {}
        self._listeners: List[StoreListener] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, events: Iterable[StoreEvent]) -> None:
        # Callers hold self._lock
        listeners = list(self._listeners)
        for event in events:
            for listener in listeners:
                try:
                    listener(event)
                except Exception as e:
                    logger.error(f"Store listener failed on {event!r}: {e}")

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, event: RawEvent) -> bool:
        """
        Store one raw notification.

        Returns:
            True if accepted, False for digests and duplicates.
        """
        if is_summary_notification(event.text):
            logger.debug(f"Skipping summary notification: {event.text!r}")
            return False

        with self._lock:
            if event.content_hash in self._messages:
                logger.debug(f"Duplicate notification ignored: {event.content_hash}")
                return False

            attribution = resolve(
                event.source_app,
                event.title,
                event.sub_text,
                event.extras,
                self_label=self.config.self_label,
            )

            conversation = self._upsert_conversation(event, attribution.is_outgoing, attribution.display_name)
            message = Message(
                content_hash=event.content_hash,
                conversation_id=event.conversation_id,
                speaker=attribution.speaker,
                text=event.text,
                timestamp=event.posted_at,
                is_outgoing=attribution.is_outgoing,
                reply_available=event.reply_available,
            )
            self._messages[message.content_hash] = message
            self._by_conversation.setdefault(message.conversation_id, []).append(message.content_hash)

            events = [
                StoreEvent(StoreEventType.CONVERSATION_UPSERTED, conversation.conversation_id,
                           conversation=conversation),
                StoreEvent(StoreEventType.MESSAGE_ADDED, message.conversation_id,
                           message=message, message_hash=message.content_hash),
            ]
            events.extend(self._enforce_retention(message.conversation_id))
            self._publish(events)

        logger.info(
            f"Stored {'outgoing' if message.is_outgoing else 'incoming'} message "
            f"in {message.conversation_id} from {message.speaker}"
        )
        return True

    def _upsert_conversation(self, event: RawEvent, is_outgoing: bool, display_name: str) -> Conversation:
        # Outgoing messages and self-labelled names never rename a conversation
        usable_name = display_name.strip()
        if usable_name.lower() == self.config.self_label.lower():
            usable_name = ""

        existing = self._conversations.pop(event.conversation_id, None)
        if existing is not None:
            conversation = replace(
                existing,
                last_message_at=event.posted_at,
                last_message_preview=event.text,
                unread_count=existing.unread_count if is_outgoing else existing.unread_count + 1,
                display_name=usable_name if (not is_outgoing and usable_name) else existing.display_name,
            )
        else:
            conversation = Conversation(
                conversation_id=event.conversation_id,
                source_app=event.source_app,
                display_name=usable_name or UNKNOWN_DISPLAY_NAME,
                last_message_at=event.posted_at,
                last_message_preview=event.text,
                unread_count=0 if is_outgoing else 1,
            )
        self._conversations[conversation.conversation_id] = conversation
        self._conversations.move_to_end(conversation.conversation_id, last=False)
        return conversation

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def _enforce_retention(self, conversation_id: str) -> List[StoreEvent]:
        evicted: List[Message] = []

        thread = self._by_conversation.get(conversation_id, [])
        while len(thread) > self.config.max_messages_per_conversation:
            evicted.append(self._remove_message(thread[0]))

        while len(self._messages) > self.config.max_notifications:
            oldest_hash = next(iter(self._messages))
            evicted.append(self._remove_message(oldest_hash))

        if evicted:
            logger.debug(f"Evicted {len(evicted)} message(s) past retention caps")

        events = [
            StoreEvent(StoreEventType.MESSAGE_DELETED, m.conversation_id, message=m, message_hash=m.content_hash)
            for m in evicted
        ]
        for affected in dict.fromkeys(m.conversation_id for m in evicted):
            events.append(self._repair_conversation(affected))
        return events

    def _remove_message(self, content_hash: str) -> Message:
        message = self._messages.pop(content_hash)
        thread = self._by_conversation.get(message.conversation_id, [])
        if content_hash in thread:
            thread.remove(content_hash)
        if not thread:
            self._by_conversation.pop(message.conversation_id, None)
        return message

    def _repair_conversation(self, conversation_id: str) -> StoreEvent:
        """Recompute preview/timestamp from the newest remaining message, or drop the conversation."""
        remaining = [self._messages[h] for h in self._by_conversation.get(conversation_id, [])]
        if not remaining:
            removed = self._conversations.pop(conversation_id, None)
            return StoreEvent(StoreEventType.CONVERSATION_DELETED, conversation_id, conversation=removed)

        newest = max(remaining, key=lambda m: m.timestamp)
        conversation = replace(
            self._conversations[conversation_id],
            last_message_at=newest.timestamp,
            last_message_preview=newest.text,
        )
        self._conversations[conversation_id] = conversation
        return StoreEvent(StoreEventType.CONVERSATION_UPSERTED, conversation_id, conversation=conversation)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_conversations(self) -> List[Conversation]:
        """All conversations, newest activity first."""
        with self._lock:
            return sorted(self._conversations.values(), key=lambda c: c.last_message_at, reverse=True)

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            return self._conversations.get(conversation_id)

    def get_message(self, content_hash: str) -> Optional[Message]:
        with self._lock:
            return self._messages.get(content_hash)

    def get_all_messages(self) -> List[Message]:
        with self._lock:
            return list(self._messages.values())

    def get_messages(self, conversation_id: str) -> List[Message]:
        """Messages of one conversation, oldest first."""
        with self._lock:
            thread = [self._messages[h] for h in self._by_conversation.get(conversation_id, [])]
        return sorted(thread, key=lambda m: m.timestamp)

    def get_conversation_context(self, conversation_id: str, limit: int = 10) -> List[Message]:
        """The most recent `limit` messages of a conversation, in chronological order."""
        if limit <= 0:
            return []
        return self.get_messages(conversation_id)[-limit:]

    def get_unsent_replies(self) -> List[Message]:
        with self._lock:
            return [m for m in self._messages.values() if m.generated_reply.strip() and not m.is_sent]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def mark_read(self, conversation_id: str) -> bool:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return False
            if conversation.unread_count == 0:
                return True
            conversation = replace(conversation, unread_count=0)
            self._conversations[conversation_id] = conversation
            self._publish([StoreEvent(StoreEventType.CONVERSATION_UPSERTED, conversation_id,
                                      conversation=conversation)])
        return True

    def update_generated_reply(self, content_hash: str, reply: str) -> bool:
        return self._update_message(content_hash, generated_reply=reply)

    def mark_sent(self, content_hash: str) -> bool:
        return self._update_message(content_hash, is_sent=True)

    def _update_message(self, content_hash: str, **changes) -> bool:
        with self._lock:
            message = self._messages.get(content_hash)
            if message is None:
                return False
            message = replace(message, **changes)
            self._messages[content_hash] = message
            self._publish([StoreEvent(StoreEventType.MESSAGE_UPDATED, message.conversation_id,
                                      message=message, message_hash=content_hash)])
        return True

    def delete_message(self, content_hash: str) -> bool:
        """Delete one message, repairing or removing its conversation."""
        with self._lock:
            if content_hash not in self._messages:
                return False
            message = self._remove_message(content_hash)
            events = [
                StoreEvent(StoreEventType.MESSAGE_DELETED, message.conversation_id,
                           message=message, message_hash=content_hash),
            ]
            if message.conversation_id in self._conversations:
                events.append(self._repair_conversation(message.conversation_id))
            self._publish(events)
        logger.info(f"Deleted message {content_hash}")
        return True

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and all of its messages."""
        with self._lock:
            hashes = list(self._by_conversation.get(conversation_id, []))
            for content_hash in hashes:
                self._remove_message(content_hash)
            removed = self._conversations.pop(conversation_id, None)
            if removed is None and not hashes:
                return False
            self._publish([StoreEvent(StoreEventType.CONVERSATION_DELETED, conversation_id, conversation=removed)])
        logger.info(f"Deleted conversation {conversation_id} with {len(hashes)} message(s)")
        return True

    def restore(self, conversations: Iterable[Conversation], messages: Iterable[Message]) -> None:
        """Load persisted rows at startup without publishing change events."""
        with self._lock:
            for conversation in conversations:
                existing = self._conversations.get(conversation.conversation_id)
                if existing is None or conversation.last_message_at > existing.last_message_at:
                    self._conversations[conversation.conversation_id] = conversation
            for message in sorted(messages, key=lambda m: m.timestamp):
                if message.content_hash in self._messages:
                    continue
                self._messages[message.content_hash] = message
                self._by_conversation.setdefault(message.conversation_id, []).append(message.content_hash)
            logger.info(
                f"Restored {len(self._conversations)} conversation(s) and {len(self._messages)} message(s)"
            )
