"""Configuration management."""

import os
from dataclasses import dataclass, field
from typing import List, Optional

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # python-dotenv is optional


@dataclass
class StoreConfig:
    """Conversation store configuration."""
    max_notifications: int = 500             # global cap across all conversations
    max_messages_per_conversation: int = 100
    self_label: str = "You"                  # speaker label for outgoing messages
    db_path: str = "assistant_state.db"


@dataclass
class IngestionConfig:
    """Notification ingress configuration."""
    connected_apps: List[str] = field(default_factory=list)  # empty = every supported app
    auto_reply: bool = False


@dataclass
class LLMConfig:
    """LLM API configuration."""
    provider: str = "openai"         # e.g. "openai" or "generic_http"
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None   # allow custom endpoint
    max_tokens: int = 500
    temperature: float = 0.2
    timeout_seconds: float = 15.0


@dataclass
class DetectorConfig:
    """Reminder intent detection configuration."""
    context_lines: int = 5
    conflict_window_minutes: int = 60
    rule_confidence: float = 0.6
    default_llm_confidence: float = 0.7


@dataclass
class SchedulerConfig:
    """Reminder scheduler configuration."""
    lead_minutes: int = 5      # notify this long before the event
    snooze_minutes: int = 10


@dataclass
class TwilioConfig:
    """Twilio SMS configuration."""
    account_sid: str
    auth_token: str
    from_number: str
    to_number: str


@dataclass
class AppConfig:
    """Complete application configuration."""
    store: StoreConfig
    ingestion: IngestionConfig
    llm: LLMConfig
    detector: DetectorConfig
    scheduler: SchedulerConfig
    twilio: Optional[TwilioConfig] = None
    owner_id: str = "local"


def _parse_list_env(key: str, default: List[str]) -> List[str]:
    """Parse comma-separated list from environment variable."""
    value = os.getenv(key, "")
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_int_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {value!r}")


def _parse_float_env(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {value!r}")


def load_config() -> AppConfig:
    """
    Load configuration from environment variables.

    The LLM key and Twilio credentials are optional: without a key the intent
    detector runs rule-based only, and without Twilio reminders are posted to
    the console.

    Raises:
        ValueError: If a numeric setting cannot be parsed.
    """
    store = StoreConfig(
        max_notifications=_parse_int_env("MAX_NOTIFICATIONS", 500),
        max_messages_per_conversation=_parse_int_env("MAX_MESSAGES_PER_CONVERSATION", 100),
        self_label=os.getenv("SELF_LABEL", "You"),
        db_path=os.getenv("DB_PATH", "assistant_state.db"),
    )
    if store.max_notifications < 1 or store.max_messages_per_conversation < 1:
        raise ValueError("Retention caps must be positive")

    ingestion = IngestionConfig(
        connected_apps=_parse_list_env("CONNECTED_APPS", []),
        auto_reply=os.getenv("AUTO_REPLY", "false").lower() == "true",
    )

    llm = LLMConfig(
        provider=os.getenv("LLM_PROVIDER", "openai"),
        api_key=os.getenv("LLM_API_KEY"),
        model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
        base_url=os.getenv("LLM_BASE_URL"),
        max_tokens=_parse_int_env("LLM_MAX_TOKENS", 500),
        temperature=_parse_float_env("LLM_TEMPERATURE", 0.2),
        timeout_seconds=_parse_float_env("LLM_TIMEOUT_SECONDS", 15.0),
    )

    detector = DetectorConfig(
        context_lines=_parse_int_env("DETECTOR_CONTEXT_LINES", 5),
        conflict_window_minutes=_parse_int_env("CONFLICT_WINDOW_MINUTES", 60),
    )

    scheduler = SchedulerConfig(
        lead_minutes=_parse_int_env("REMINDER_LEAD_MINUTES", 5),
        snooze_minutes=_parse_int_env("SNOOZE_MINUTES", 10),
    )

    # Twilio is all-or-nothing
    twilio = None
    twilio_account_sid = os.getenv("TWILIO_ACCOUNT_SID")
    twilio_auth_token = os.getenv("TWILIO_AUTH_TOKEN")
    twilio_from_number = os.getenv("TWILIO_FROM_NUMBER")
    twilio_to_number = os.getenv("TWILIO_TO_NUMBER")
    if twilio_account_sid and twilio_auth_token and twilio_from_number and twilio_to_number:
        twilio = TwilioConfig(
            account_sid=twilio_account_sid,
            auth_token=twilio_auth_token,
            from_number=twilio_from_number,
            to_number=twilio_to_number,
        )

    return AppConfig(
        store=store,
        ingestion=ingestion,
        llm=llm,
        detector=detector,
        scheduler=scheduler,
        twilio=twilio,
        owner_id=os.getenv("OWNER_ID", "local"),
    )
