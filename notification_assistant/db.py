"""SQLite persistence for conversations, messages and reminders."""

import logging
import sqlite3
import threading
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from .models import Conversation, Message, Reminder
from .repository import ConversationRepository, ReminderRepository

logger = logging.getLogger(__name__)


def init_db(db_path: str) -> sqlite3.Connection:
    """
    Initialize the database and create tables if they don't exist.

    Args:
        db_path: Path to the SQLite database file (":memory:" for tests).

    Returns:
        A connection to the database, usable from any thread.
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("""
        CREATE TABLE IF NOT EXISTS conversations (
            conversation_id TEXT PRIMARY KEY,
            source_app TEXT NOT NULL,
            display_name TEXT NOT NULL,
            last_message_at TEXT NOT NULL,
            last_message_preview TEXT NOT NULL DEFAULT '',
            unread_count INTEGER NOT NULL DEFAULT 0
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS messages (
            content_hash TEXT PRIMARY KEY,
            conversation_id TEXT NOT NULL,
            speaker TEXT NOT NULL,
            text TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            is_outgoing INTEGER NOT NULL DEFAULT 0,
            reply_available INTEGER NOT NULL DEFAULT 0,
            generated_reply TEXT NOT NULL DEFAULT '',
            is_sent INTEGER NOT NULL DEFAULT 0
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS reminders (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            event_time TEXT NOT NULL,
            notify_at TEXT NOT NULL,
            event_type TEXT NOT NULL,
            source TEXT NOT NULL,
            conversation_id TEXT NOT NULL DEFAULT '',
            is_completed INTEGER NOT NULL DEFAULT 0,
            is_notified INTEGER NOT NULL DEFAULT 0,
            color TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_reminders_event_time ON reminders(event_time)")
    conn.commit()
    return conn


# ----------------------------------------------------------------------
# Conversations and messages
# ----------------------------------------------------------------------

def save_conversation(conn: sqlite3.Connection, conversation: Conversation) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO conversations "
        "(conversation_id, source_app, display_name, last_message_at, last_message_preview, "
        "unread_count) VALUES (?, ?, ?, ?, ?, ?)",
        (
            conversation.conversation_id,
            conversation.source_app,
            conversation.display_name,
            conversation.last_message_at.isoformat(),
            conversation.last_message_preview,
            conversation.unread_count,
        ),
    )
    conn.commit()


def save_message(conn: sqlite3.Connection, message: Message) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO messages "
        "(content_hash, conversation_id, speaker, text, timestamp, is_outgoing, reply_available, "
        "generated_reply, is_sent) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            message.content_hash,
            message.conversation_id,
            message.speaker,
            message.text,
            message.timestamp.isoformat(),
            int(message.is_outgoing),
            int(message.reply_available),
            message.generated_reply,
            int(message.is_sent),
        ),
    )
    conn.commit()


def delete_message(conn: sqlite3.Connection, content_hash: str) -> None:
    conn.execute("DELETE FROM messages WHERE content_hash = ?", (content_hash,))
    conn.commit()


def delete_conversation(conn: sqlite3.Connection, conversation_id: str) -> None:
    conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
    conn.execute("DELETE FROM conversations WHERE conversation_id = ?", (conversation_id,))
    conn.commit()


def get_conversations(conn: sqlite3.Connection) -> List[Conversation]:
    rows = conn.execute("SELECT * FROM conversations ORDER BY last_message_at DESC").fetchall()
    return [
        Conversation(
            conversation_id=row["conversation_id"],
            source_app=row["source_app"],
            display_name=row["display_name"],
            last_message_at=datetime.fromisoformat(row["last_message_at"]),
            last_message_preview=row["last_message_preview"],
            unread_count=row["unread_count"],
        )
        for row in rows
    ]


def get_messages(conn: sqlite3.Connection) -> List[Message]:
    rows = conn.execute("SELECT * FROM messages ORDER BY timestamp ASC").fetchall()
    return [
        Message(
            content_hash=row["content_hash"],
            conversation_id=row["conversation_id"],
            speaker=row["speaker"],
            text=row["text"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            is_outgoing=bool(row["is_outgoing"]),
            reply_available=bool(row["reply_available"]),
            generated_reply=row["generated_reply"],
            is_sent=bool(row["is_sent"]),
        )
        for row in rows
    ]


# ----------------------------------------------------------------------
# Reminders
# ----------------------------------------------------------------------

def save_reminder(conn: sqlite3.Connection, reminder: Reminder) -> None:
    data = reminder.to_dict()
    data["is_completed"] = int(data["is_completed"])
    data["is_notified"] = int(data["is_notified"])
    columns = ", ".join(data.keys())
    placeholders = ", ".join("?" for _ in data)
    conn.execute(
        f"INSERT OR REPLACE INTO reminders ({columns}) VALUES ({placeholders})",
        tuple(data.values()),
    )
    conn.commit()


def get_reminder(conn: sqlite3.Connection, reminder_id: str) -> Optional[Reminder]:
    row = conn.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()
    return Reminder.from_dict(dict(row)) if row else None


def get_reminders_between(conn: sqlite3.Connection, start: datetime, end: Optional[datetime] = None,
                          include_completed: bool = True) -> List[Reminder]:
    """Reminders with start <= event_time < end (end open when None), oldest first."""
    query = "SELECT * FROM reminders WHERE event_time >= ?"
    params: list = [start.isoformat()]
    if end is not None:
        query += " AND event_time < ?"
        params.append(end.isoformat())
    if not include_completed:
        query += " AND is_completed = 0"
    query += " ORDER BY event_time ASC"
    return [Reminder.from_dict(dict(row)) for row in conn.execute(query, params).fetchall()]


def set_reminder_flag(conn: sqlite3.Connection, reminder_id: str, column: str) -> bool:
    if column not in ("is_completed", "is_notified"):
        raise ValueError(f"Unknown reminder flag: {column}")
    cursor = conn.execute(
        f"UPDATE reminders SET {column} = 1, updated_at = ? WHERE id = ?",
        (datetime.now().isoformat(), reminder_id),
    )
    conn.commit()
    return cursor.rowcount > 0


# ----------------------------------------------------------------------
# Metadata
# ----------------------------------------------------------------------

def get_meta(conn: sqlite3.Connection, key: str) -> Optional[str]:
    """
    Get a metadata value from the database.

    Args:
        conn: Database connection.
        key: Metadata key.

    Returns:
        The metadata value, or None if not found.
    """
    cursor = conn.execute("SELECT value FROM meta WHERE key = ?", (key,))
    row = cursor.fetchone()
    return row[0] if row else None


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
        (key, value)
    )
    conn.commit()


class SQLiteRepository(ConversationRepository, ReminderRepository):
    """Both repository contracts over one SQLite connection."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        self.conn = init_db(db_path)
        logger.info(f"Database ready at {db_path}")

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def save_conversation(self, conversation: Conversation) -> None:
        with self._lock:
            save_conversation(self.conn, conversation)

    def save_message(self, message: Message) -> None:
        with self._lock:
            save_message(self.conn, message)

    def delete_message(self, content_hash: str) -> None:
        with self._lock:
            delete_message(self.conn, content_hash)

    def delete_conversation(self, conversation_id: str) -> None:
        with self._lock:
            delete_conversation(self.conn, conversation_id)

    def load_conversations(self) -> List[Conversation]:
        with self._lock:
            return get_conversations(self.conn)

    def load_messages(self) -> List[Message]:
        with self._lock:
            return get_messages(self.conn)

    def save_reminder(self, reminder: Reminder) -> None:
        with self._lock:
            save_reminder(self.conn, reminder)

    def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        with self._lock:
            return get_reminder(self.conn, reminder_id)

    def get_upcoming_reminders(self, now: datetime) -> List[Reminder]:
        start_of_day = datetime.combine(now.date(), time.min)
        with self._lock:
            return get_reminders_between(self.conn, start_of_day, include_completed=False)

    def get_reminders_for_date(self, day: date) -> List[Reminder]:
        start = datetime.combine(day, time.min)
        with self._lock:
            return get_reminders_between(self.conn, start, start + timedelta(days=1))

    def mark_completed(self, reminder_id: str) -> bool:
        with self._lock:
            return set_reminder_flag(self.conn, reminder_id, "is_completed")

    def mark_notified(self, reminder_id: str) -> bool:
        with self._lock:
            return set_reminder_flag(self.conn, reminder_id, "is_notified")

    def get_meta(self, key: str) -> Optional[str]:
        with self._lock:
            return get_meta(self.conn, key)

    def set_meta(self, key: str, value: str) -> None:
        with self._lock:
            set_meta(self.conn, key, value)
