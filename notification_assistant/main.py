"""Main entry point for the notification assistant."""

import argparse
import json
import logging
import os
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .config import AppConfig, load_config
from .db import SQLiteRepository
from .delivery import ReminderDelivery
from .intent_detector import ReminderIntentDetector
from .listener import NotificationListener
from .models import _parse_dt
from .notifier import ConsoleNotificationPoster, NotificationPoster, TwilioNotificationPoster
from .openai_client import create_llm_client
from .reminder_service import ReminderService
from .reply import ReplyGenerator
from .scheduler import ReminderScheduler
from .store import ConversationStore
from .sync import StoreSync
from .timer_service import ThreadingTimerService

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


@dataclass
class Assistant:
    """All wired-up components for one process."""
    config: AppConfig
    repository: SQLiteRepository
    store: ConversationStore
    sync: StoreSync
    detector: ReminderIntentDetector
    replies: ReplyGenerator
    listener: NotificationListener
    timers: ThreadingTimerService
    scheduler: ReminderScheduler
    delivery: ReminderDelivery
    reminders: ReminderService

    def close(self) -> None:
        self.listener.close()
        self.detector.close()
        self.sync.close()
        self.timers.cancel_all()
        self.repository.close()


def _create_poster(config: AppConfig) -> NotificationPoster:
    if config.twilio is not None:
        try:
            return TwilioNotificationPoster(config.twilio)
        except ImportError as e:
            logger.warning(f"{e}; printing reminders to the console instead")
    return ConsoleNotificationPoster()


def build_assistant(config: AppConfig) -> Assistant:
    """Wire the store, detector, scheduler and delivery over one SQLite database."""
    logger.info(f"Initializing database at {config.store.db_path}...")
    repository = SQLiteRepository(config.store.db_path)

    store = ConversationStore(config.store)
    store.restore(repository.load_conversations(), repository.load_messages())
    sync = StoreSync(repository).attach(store)

    llm_client = create_llm_client(config.llm)
    if llm_client is None:
        logger.info("No LLM_API_KEY set; intent detection runs rule-based only")

    detector = ReminderIntentDetector(llm_client, repository, config.detector, config.llm)
    replies = ReplyGenerator(store, llm_client, config.llm, reminders=repository, detector=detector)
    listener = NotificationListener(store, config.ingestion, replies)

    poster = _create_poster(config)
    timers = ThreadingTimerService()
    scheduler = ReminderScheduler(timers, repository, config.scheduler, poster)
    delivery = ReminderDelivery(poster, scheduler, repository)
    timers.set_handler(delivery.on_fire)
    reminders = ReminderService(repository, scheduler, config.owner_id)

    return Assistant(
        config=config,
        repository=repository,
        store=store,
        sync=sync,
        detector=detector,
        replies=replies,
        listener=listener,
        timers=timers,
        scheduler=scheduler,
        delivery=delivery,
        reminders=reminders,
    )


def ingest_file(assistant: Assistant, path: str, detect: bool = False, confirm: bool = False) -> int:
    """
    Feed a JSON-lines file of notifications through the listener.

    Each line holds "package", "title", "text" and optionally "posted_at"
    (ISO 8601), "sub_text", "key" and "extras".

    Returns:
        Number of notifications stored.
    """
    stored = 0
    with open(path, encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, 1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping line {line_number}: {e}")
                continue

            event = assistant.listener.on_notification_posted(
                package_name=record.get("package", ""),
                title=record.get("title"),
                text=record.get("text"),
                posted_at=_parse_dt(record.get("posted_at")),
                sub_text=record.get("sub_text"),
                key=record.get("key"),
                extras=record.get("extras"),
            )
            if event is None:
                continue
            stored += 1

            if not (detect or confirm):
                continue
            message = assistant.store.get_message(event.content_hash)
            if message is None:
                continue
            intent = assistant.detector.detect_for_message(assistant.store, message)
            if intent is None:
                continue
            print(f"[{message.speaker}] {message.text}")
            print(f"  -> {intent.title} ({intent.event_type.display_name}) {intent.formatted_datetime()}"
                  f" confidence={intent.confidence:.2f}")
            for conflict in intent.conflicting_reminders:
                print(f"     conflicts with {conflict.title} at {conflict.formatted_time}")
            if confirm:
                reminder = assistant.reminders.confirm(intent)
                if reminder is not None:
                    print(f"     saved reminder {reminder.id}")
    return stored


def run_reschedule(assistant: Assistant, wait: bool = False) -> int:
    armed = assistant.scheduler.reschedule_all()
    assistant.repository.set_meta("last_reschedule", datetime.now().isoformat())
    print(f"Armed {armed} reminder(s)")
    if wait and armed:
        logger.info("Waiting for reminders to fire (Ctrl+C to stop)...")
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            logger.info("Stopped.")
    return armed


def main(argv: Optional[list] = None):
    """Main entry point with command-line argument parsing."""
    parser = argparse.ArgumentParser(
        description="Chat notification assistant: conversation store, reminder detection and scheduling"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a JSON-lines file of notifications")
    ingest_parser.add_argument("file", help="Path to the JSON-lines file")
    ingest_parser.add_argument(
        "--detect",
        action="store_true",
        help="Run reminder detection on each stored message and print the results"
    )
    ingest_parser.add_argument(
        "--confirm",
        action="store_true",
        help="Save and schedule every detected reminder (implies --detect)"
    )

    reschedule_parser = subparsers.add_parser(
        "reschedule",
        help="Re-arm timers for all upcoming reminders (run after a restart)"
    )
    reschedule_parser.add_argument(
        "--wait",
        action="store_true",
        help="Keep running so armed reminders can fire"
    )

    done_parser = subparsers.add_parser("done", help="Mark a reminder completed")
    done_parser.add_argument("reminder_id")

    args = parser.parse_args(argv)

    try:
        logger.info("Loading configuration...")
        config = load_config()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    assistant = build_assistant(config)
    try:
        if args.command == "ingest":
            stored = ingest_file(assistant, args.file, detect=args.detect, confirm=args.confirm)
            logger.info(f"Stored {stored} new notification(s)")
        elif args.command == "reschedule":
            run_reschedule(assistant, wait=args.wait)
        elif args.command == "done":
            if not assistant.reminders.complete(args.reminder_id):
                logger.error(f"Reminder {args.reminder_id} not found")
                sys.exit(1)
    except OSError as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        assistant.close()


if __name__ == "__main__":
    main()
