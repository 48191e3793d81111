"""Abstract LLM client interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Sequence


@dataclass(frozen=True)
class ChatMessage:
    """One role-tagged turn ("system", "user" or "assistant")."""
    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    def chat(self, messages: Sequence[ChatMessage], max_tokens: int, temperature: float) -> str:
        """
        Complete a dialogue using the LLM.

        Args:
            messages: Ordered role-tagged turns.
            max_tokens: Maximum number of tokens in the response.
            temperature: Sampling temperature (0.0-1.0).

        Returns:
            The LLM's response text (trimmed).

        Raises:
            Exception: On any transport or API failure.
        """
        pass

    def complete(self, prompt: str, max_tokens: int, temperature: float) -> str:
        """Single-prompt convenience wrapper around chat()."""
        return self.chat([ChatMessage("user", prompt)], max_tokens, temperature)


def to_payload(messages: Sequence[ChatMessage]) -> List[Dict[str, str]]:
    return [message.to_dict() for message in messages]
