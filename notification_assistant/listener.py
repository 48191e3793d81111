"""Ingress adapter: turns platform notifications into RawEvents for the store."""

import hashlib
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from .config import IngestionConfig
from .models import RawEvent, SourceApp
from .reply import ReplyGenerator, ReplyResult
from .store import ConversationStore

logger = logging.getLogger(__name__)

NO_TITLE = "(No Title)"
NO_TEXT = "(No Text)"

SUPPORTED_APPS = {app.package_name: app.display_name for app in SourceApp if app.supported}


def _digest(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()[:12]


def conversation_id_for(package_name: str, title: str, sender: Optional[str], key: Optional[str] = None) -> str:
    """
    Stable thread id. Prefers the platform's per-notification key and falls
    back to package, title and sender.
    """
    if key and key.strip():
        return f"{package_name}_{_digest(key)}"
    return _digest(f"{package_name}_{title}_{sender or 'unknown'}")


class NotificationListener:
    """Filters, normalizes and ingests posted notifications."""

    def __init__(
        self,
        store: ConversationStore,
        config: Optional[IngestionConfig] = None,
        replies: Optional[ReplyGenerator] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.config = config or IngestionConfig()
        self.replies = replies
        self.clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="auto-reply")

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def is_connected(self, package_name: str) -> bool:
        """Supported and enabled by the user. An empty connected list enables every supported app."""
        if package_name not in SUPPORTED_APPS:
            return False
        return not self.config.connected_apps or package_name in self.config.connected_apps

    def on_notification_posted(
        self,
        package_name: str,
        title: Optional[str],
        text: Optional[str],
        posted_at: Optional[datetime] = None,
        sub_text: Optional[str] = None,
        key: Optional[str] = None,
        reply_handle: Any = None,
        extras: Optional[Mapping[str, str]] = None,
    ) -> Optional[RawEvent]:
        """
        Handle one posted notification.

        Returns:
            The RawEvent if the store accepted it, None if ignored or rejected.
        """
        if package_name not in SUPPORTED_APPS:
            logger.debug(f"Notification ignored - not from supported app: {package_name}")
            return None
        if not self.is_connected(package_name):
            logger.debug(f"Notification ignored - app not connected: {package_name}")
            return None

        title = title or NO_TITLE
        text = text or NO_TEXT
        event = RawEvent.create(
            source_app=package_name,
            title=title,
            text=text,
            posted_at=posted_at or self.clock(),
            conversation_id=conversation_id_for(package_name, title, sub_text, key),
            sub_text=sub_text,
            reply_available=reply_handle is not None,
            reply_handle=reply_handle,
            extras=dict(extras or {}),
        )

        if not self.store.ingest(event):
            logger.debug(f"Notification from {SUPPORTED_APPS[package_name]} not stored")
            return None
        logger.info(f"New notification stored: {event.conversation_id}")

        if event.reply_available and self.replies is not None:
            self.replies.register_handle(event.content_hash, event.reply_handle)
            if self.config.auto_reply:
                self.trigger_reply(event.content_hash)
        return event

    def trigger_reply(self, content_hash: str) -> "Future[Optional[ReplyResult]]":
        """Generate (and send) a reply on the worker thread."""

        def _run() -> Optional[ReplyResult]:
            try:
                result = self.replies.generate(content_hash)
                if result.success:
                    self.replies.send_reply(content_hash)
                return result
            except Exception as e:
                logger.error(f"Auto-reply failed for {content_hash}: {e}", exc_info=True)
                return None

        return self._executor.submit(_run)
