"""Persistence collaborator contracts."""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional

from .models import Conversation, Message, Reminder


class ConversationRepository(ABC):
    """Durable home for conversations and messages."""

    @abstractmethod
    def save_conversation(self, conversation: Conversation) -> None:
        pass

    @abstractmethod
    def save_message(self, message: Message) -> None:
        pass

    @abstractmethod
    def delete_message(self, content_hash: str) -> None:
        pass

    @abstractmethod
    def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation and its messages."""
        pass

    @abstractmethod
    def load_conversations(self) -> List[Conversation]:
        pass

    @abstractmethod
    def load_messages(self) -> List[Message]:
        pass


class ReminderRepository(ABC):
    """Durable home for reminders."""

    @abstractmethod
    def save_reminder(self, reminder: Reminder) -> None:
        """Insert or replace a reminder."""
        pass

    @abstractmethod
    def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        pass

    @abstractmethod
    def get_upcoming_reminders(self, now: datetime) -> List[Reminder]:
        """
        Reminders whose event is at or after the start of now's day and that
        are not completed, sorted by event time.
        """
        pass

    @abstractmethod
    def get_reminders_for_date(self, day: date) -> List[Reminder]:
        """Reminders whose event falls on the given calendar day, sorted by event time."""
        pass

    @abstractmethod
    def mark_completed(self, reminder_id: str) -> bool:
        pass

    @abstractmethod
    def mark_notified(self, reminder_id: str) -> bool:
        pass
