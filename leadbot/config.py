from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

# -----------------------------
# .env Loader
# -----------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
ENV_PATH = os.path.join(BASE_DIR, "..", ".env")
load_dotenv(dotenv_path=ENV_PATH, override=False)


# -----------------------------
# Env helpers
# -----------------------------
def env_bool(key: str, default: bool = False) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


def env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    return v if (v and str(v).strip() != "") else default


def env_list(key: str, default: Tuple[str, ...] = ()) -> Tuple[str, ...]:
    """Comma separated env value → tuple of trimmed, non-empty entries."""
    raw = os.getenv(key)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


# -----------------------------
# Persistence keys
# -----------------------------
LEADS_KEY = "leads"
MESSAGES_PER_DAY_KEY = "messagesPerDay"
LAST_GREETING_KEY = "lastGreeting"
LAST_RESPONSE_KEY = "lastResponse"
BACKUP_KEY_PREFIX = "backup:leads:"


# -----------------------------
# Settings Object
# -----------------------------
@dataclass(frozen=True)
class Settings:
    STORE_BACKEND: str
    STATE_DIR: str
    FORCE_IN_MEMORY: bool
    REDIS_URL: Optional[str]
    REDIS_TLS: bool
    AIRTABLE_API_KEY: Optional[str]
    AIRTABLE_BASE_ID: Optional[str]
    AIRTABLE_STATE_TABLE: str
    OPENAI_API_KEY: Optional[str]
    OPENAI_MODEL: str
    OPENAI_TIMEOUT: float
    OPENAI_MAX_RETRIES: int
    REMOTE_CLASSIFIER_ENABLED: bool
    CLASSIFIER_TIMEOUT_SEC: float
    CLASSIFIER_CACHE_TTL_SEC: int
    MONITORED_GROUPS: Tuple[str, ...]
    MONITOR_DIRECT_MESSAGES: bool
    ACK_COOLDOWN_MINUTES: int
    MAX_GREETINGS_PER_DAY: int
    GREETING_MIN_GAP_MINUTES: int
    GREETINGS_ENABLED: bool
    ACK_TEXT: str
    CLAIM_TTL_MINUTES: int
    CONTEXT_SIZE: int
    SIMILARITY_WINDOW: int
    SIMILARITY_THRESHOLD: float
    LOCAL_TZ: str
    GATEWAY_URL: Optional[str]
    GATEWAY_TOKEN: Optional[str]
    GATEWAY_TIMEOUT_SEC: float
    SEND_MAX_RETRIES: int
    SEND_RETRY_DELAY_SEC: float
    ADMIN_CONVERSATION_ID: Optional[str]
    LEAD_ALERTS_ENABLED: bool
    TELEGRAM_BOT_TOKEN: Optional[str]
    TELEGRAM_CHAT_ID: Optional[str]
    VIBRATE_ON_NEW_LEADS: bool
    LEAD_LOG_PATH: str
    WEBHOOK_TOKEN: Optional[str]
    IDEMPOTENCY_TTL_SEC: int
    MAINTENANCE_INTERVAL_SEC: int


@lru_cache(maxsize=1)
def settings() -> Settings:
    return Settings(
        STORE_BACKEND=(env_str("LEADBOT_STORE", "file") or "file").lower(),
        STATE_DIR=env_str("LEADBOT_STATE_DIR", "./state") or "./state",
        FORCE_IN_MEMORY=env_bool("LEADBOT_FORCE_IN_MEMORY"),
        REDIS_URL=env_str("REDIS_URL"),
        REDIS_TLS=env_bool("REDIS_TLS", False),
        AIRTABLE_API_KEY=env_str("AIRTABLE_API_KEY"),
        AIRTABLE_BASE_ID=env_str("AIRTABLE_BASE_ID"),
        AIRTABLE_STATE_TABLE=env_str("AIRTABLE_STATE_TABLE", "State") or "State",
        OPENAI_API_KEY=env_str("OPENAI_API_KEY"),
        OPENAI_MODEL=env_str("OPENAI_MODEL", "gpt-4o-mini") or "gpt-4o-mini",
        OPENAI_TIMEOUT=env_float("OPENAI_TIMEOUT", 12.0),
        OPENAI_MAX_RETRIES=env_int("OPENAI_MAX_RETRIES", 1),
        REMOTE_CLASSIFIER_ENABLED=env_bool("REMOTE_CLASSIFIER_ENABLED", True),
        CLASSIFIER_TIMEOUT_SEC=env_float("CLASSIFIER_TIMEOUT_SEC", 15.0),
        CLASSIFIER_CACHE_TTL_SEC=env_int("CLASSIFIER_CACHE_TTL_SEC", 300),
        MONITORED_GROUPS=env_list("MONITORED_GROUPS"),
        MONITOR_DIRECT_MESSAGES=env_bool("MONITOR_DIRECT_MESSAGES", True),
        ACK_COOLDOWN_MINUTES=env_int("ACK_COOLDOWN_MINUTES", 60),
        MAX_GREETINGS_PER_DAY=env_int("MAX_GREETINGS_PER_DAY", 2),
        GREETING_MIN_GAP_MINUTES=env_int("GREETING_MIN_GAP_MINUTES", 60),
        GREETINGS_ENABLED=env_bool("GREETINGS_ENABLED", True),
        ACK_TEXT=env_str("ACK_TEXT", "Checking team") or "Checking team",
        CLAIM_TTL_MINUTES=env_int("CLAIM_TTL_MINUTES", 240),
        CONTEXT_SIZE=env_int("CONTEXT_SIZE", 10),
        SIMILARITY_WINDOW=env_int("SIMILARITY_WINDOW", 5),
        SIMILARITY_THRESHOLD=env_float("SIMILARITY_THRESHOLD", 0.7),
        LOCAL_TZ=env_str("LOCAL_TZ", "Asia/Kolkata") or "Asia/Kolkata",
        GATEWAY_URL=env_str("GATEWAY_URL"),
        GATEWAY_TOKEN=env_str("GATEWAY_TOKEN"),
        GATEWAY_TIMEOUT_SEC=env_float("GATEWAY_TIMEOUT_SEC", 10.0),
        SEND_MAX_RETRIES=env_int("SEND_MAX_RETRIES", 2),
        SEND_RETRY_DELAY_SEC=env_float("SEND_RETRY_DELAY_SEC", 2.0),
        ADMIN_CONVERSATION_ID=env_str("ADMIN_CONVERSATION_ID"),
        LEAD_ALERTS_ENABLED=env_bool("LEAD_ALERTS_ENABLED", False),
        TELEGRAM_BOT_TOKEN=env_str("TELEGRAM_BOT_TOKEN"),
        TELEGRAM_CHAT_ID=env_str("TELEGRAM_CHAT_ID"),
        VIBRATE_ON_NEW_LEADS=env_bool("VIBRATE_ON_NEW_LEADS", False),
        LEAD_LOG_PATH=env_str("LEAD_LOG_PATH", "./logs/leads_log.txt") or "./logs/leads_log.txt",
        WEBHOOK_TOKEN=env_str("WEBHOOK_TOKEN"),
        IDEMPOTENCY_TTL_SEC=env_int("IDEMPOTENCY_TTL_SEC", 24 * 60 * 60),
        MAINTENANCE_INTERVAL_SEC=env_int("MAINTENANCE_INTERVAL_SEC", 600),
    )


def refresh_settings() -> Settings:
    settings.cache_clear()
    return settings()


# -----------------------------
# Time helpers
# -----------------------------
def local_tz():
    try:
        return ZoneInfo(settings().LOCAL_TZ)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def local_now() -> datetime:
    return datetime.now(local_tz())
