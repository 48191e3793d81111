"""Mirror store change events into the persistence collaborator."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from .events import StoreEvent, StoreEventType
from .repository import ConversationRepository
from .store import ConversationStore

logger = logging.getLogger(__name__)


class StoreSync:
    """
    Fire-and-forget writer for store mutations.

    A single worker applies events in publication order. Failed writes are
    logged and dropped; retrying is the repository's business.
    """

    def __init__(self, repository: ConversationRepository):
        self.repository = repository
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="store-sync")
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, store: ConversationStore) -> "StoreSync":
        self._unsubscribe = store.subscribe(self.handle)
        return self

    def handle(self, event: StoreEvent) -> None:
        self._executor.submit(self._apply, event)

    def _apply(self, event: StoreEvent) -> None:
        try:
            if event.type is StoreEventType.CONVERSATION_UPSERTED and event.conversation:
                self.repository.save_conversation(event.conversation)
            elif event.type in (StoreEventType.MESSAGE_ADDED, StoreEventType.MESSAGE_UPDATED) and event.message:
                self.repository.save_message(event.message)
            elif event.type is StoreEventType.MESSAGE_DELETED:
                self.repository.delete_message(event.message_hash)
            elif event.type is StoreEventType.CONVERSATION_DELETED:
                self.repository.delete_conversation(event.conversation_id)
            logger.debug(f"Synced {event!r}")
        except Exception as e:
            logger.error(f"Sync failed for {event!r}: {e}")

    def close(self) -> None:
        """Stop listening and wait for queued writes to finish."""
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        self._executor.shutdown(wait=True)
