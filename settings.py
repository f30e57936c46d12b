from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Tuple


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _csv(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


DEFAULT_CONFIRMATION_PHRASES: Tuple[str, ...] = (
    "好",
    "好的",
    "ok",
    "OK",
    "可以",
    "對",
    "對的",
    "沒問題",
    "是",
    "是的",
    "確認",
    "確定",
    "沒錯",
    "正確",
    "yes",
    "Yes",
    "YES",
)


@dataclass(frozen=True)
class Settings:
    service_name: str = os.getenv("SERVICE_NAME", "travel-desk-agent-platform")
    default_region_id: str = os.getenv("DEFAULT_REGION_ID", "taipei")

    classifier_provider: str = os.getenv("CLASSIFIER_PROVIDER", "keyword")
    classifier_model: str = os.getenv("CLASSIFIER_MODEL", "gpt-4o-mini")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    classifier_timeout_seconds: float = _float("CLASSIFIER_TIMEOUT_SECONDS", 8.0)
    classifier_history_turns: int = _int("CLASSIFIER_HISTORY_TURNS", 3)
    low_confidence_threshold: float = _float("LOW_CONFIDENCE_THRESHOLD", 0.5)

    continuation_window_seconds: int = _int("CONTINUATION_WINDOW_SECONDS", 300)
    short_message_max_chars: int = _int("SHORT_MESSAGE_MAX_CHARS", 10)
    confirmation_phrases: Tuple[str, ...] = field(
        default_factory=lambda: _csv("CONFIRMATION_PHRASES", DEFAULT_CONFIRMATION_PHRASES)
    )
    history_max_turns: int = _int("HISTORY_MAX_TURNS", 20)
    session_ttl_seconds: int = _int("SESSION_TTL_SECONDS", 24 * 60 * 60)
    session_store_durable: bool = _bool("SESSION_STORE_DURABLE", False)
    session_store_path: str = os.getenv("SESSION_STORE_PATH", "./data/session_store.json")

    faq_corpus_path: str = os.getenv("FAQ_CORPUS_PATH", "")
    faq_max_results: int = _int("FAQ_MAX_RESULTS", 3)
    faq_context_max_chars: int = _int("FAQ_CONTEXT_MAX_CHARS", 1500)

    region_profiles_dir: str = os.getenv("REGION_PROFILES_DIR", "")
    working_hours_cache_seconds: int = _int("WORKING_HOURS_CACHE_SECONDS", 300)
    promotion_window_minutes: int = _int("PROMOTION_WINDOW_MINUTES", 5)
    forced_promotion_hours: int = _int("FORCED_PROMOTION_HOURS", 24)
    sweep_interval_seconds: int = _int("SWEEP_INTERVAL_SECONDS", 60)
    sweep_item_timeout_seconds: float = _float("SWEEP_ITEM_TIMEOUT_SECONDS", 5.0)
    closed_retention_days: int = _int("CLOSED_RETENTION_DAYS", 90)
    inprocess_sweep: bool = _bool("INPROCESS_SWEEP", False)

    handoff_queue_path: str = os.getenv("HANDOFF_QUEUE_PATH", "./data/handoff_queue.json")
    customer_profile_store_path: str = os.getenv("CUSTOMER_PROFILE_STORE_PATH", "./data/customer_profiles.json")
    audit_log_path: str = os.getenv("AUDIT_LOG_PATH", "./data/audit.log.jsonl")

    redis_url: str = os.getenv("REDIS_URL", "")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug: bool = _bool("DEBUG", True)


SETTINGS = Settings()
