"""OpenAI LLM client implementation."""

import logging
from typing import Optional, Sequence

from .config import LLMConfig
from .llm_client import ChatMessage, LLMClient, to_payload

logger = logging.getLogger(__name__)

try:
    from openai import OpenAI
    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False
    logger.warning("OpenAI library not installed. Install with: pip install openai")


class OpenAILLMClient(LLMClient):
    """OpenAI API client for chat completion."""

    def __init__(self, config: LLMConfig):
        """
        Initialize the OpenAI client.

        Args:
            config: LLM configuration.
        """
        if not OPENAI_AVAILABLE:
            raise ImportError(
                "OpenAI library not installed. Install with: pip install openai"
            )

        self.config = config
        self.client = OpenAI(
            api_key=config.api_key,
            base_url=config.base_url if config.base_url else None,
            timeout=config.timeout_seconds,
            max_retries=0,  # the caller falls back instead of waiting
        )

    def chat(self, messages: Sequence[ChatMessage], max_tokens: int, temperature: float) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=to_payload(messages),
                temperature=temperature,
                max_tokens=max_tokens,
            )
            return (response.choices[0].message.content or "").strip()
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            raise


class GenericHTTPLLMClient(LLMClient):
    """Generic HTTP client for OpenAI-compatible LLM APIs."""

    def __init__(self, config: LLMConfig):
        import requests
        self.config = config
        self.base_url = (config.base_url or "https://api.openai.com/v1").rstrip("/")
        self.api_key = config.api_key
        self.model = config.model
        self.requests = requests

    def chat(self, messages: Sequence[ChatMessage], max_tokens: int, temperature: float) -> str:
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload = {
            "model": self.model,
            "messages": to_payload(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        try:
            response = self.requests.post(url, json=payload, headers=headers, timeout=self.config.timeout_seconds)
            response.raise_for_status()
            data = response.json()
            return (data["choices"][0]["message"]["content"] or "").strip()
        except Exception as e:
            logger.error(f"HTTP LLM API error: {e}")
            raise


def create_llm_client(config: LLMConfig) -> Optional[LLMClient]:
    """Create an LLM client based on configuration, or None when no key is set."""
    if not config.api_key:
        logger.info("No LLM_API_KEY configured; language-model features disabled")
        return None
    if config.provider == "openai":
        return OpenAILLMClient(config)
    return GenericHTTPLLMClient(config)
