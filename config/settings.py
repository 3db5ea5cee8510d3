from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv


def _load_env() -> None:
    # Centralized dotenv loading; safe if .env missing
    load_dotenv()


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass(frozen=True)
class Settings:
    # Core/runtime
    db_path: str = "pipeline.db"
    run_env: str = "local"
    log_level: str = "INFO"

    openai_api_key: str | None = None
    openai_model: str | None = "gpt-4o-mini"

    # AI gating
    ai_enabled: bool = False
    ai_provider: str = "stub"  # stub | openai

    # Profile enrichment API
    profile_api_base_url: str = "https://api.unipile.com/api/v1"
    profile_api_key: str | None = None
    profile_accounts: list[str] = field(default_factory=list)
    account_daily_limit: int = 80
    http_timeout_seconds: int = 20

    # Call executor: spacing, retries, backoff
    call_spacing_min_seconds: float = 2.0
    call_spacing_max_seconds: float = 8.0
    call_max_attempts: int = 3
    call_backoff_base_seconds: float = 1.0
    call_backoff_cap_seconds: float = 30.0
    operation_timeout_minutes: int = 10

    # Stage retries
    stage_max_retries: int = 3
    stage_retry_delay_seconds: int = 300

    # Batching/concurrency
    batch_size: int = 50
    concurrency: int = 5
    sub_batch_pause_seconds: float = 1.0
    dispatch_workers: int = 4

    # Enrichment dedup
    enrichment_cache_days: int = 30

    # Recovery
    stale_after_hours: int = 24
    requalify_lookback_days: int = 7
    requeue_priority_penalty: int = 2
    emergency_window_hours: int = 24

    # Targeting (stage 2 heuristics)
    target_languages: list[str] = field(default_factory=lambda: ["fr", "en"])
    target_locations: list[str] = field(default_factory=lambda: [
        "france", "paris", "lyon", "belgique", "belgium", "suisse", "switzerland",
        "luxembourg", "monaco",
    ])

    # Logging/tracing
    llm_trace: bool = False
    llm_log_path: str = "logs/llm_calls.jsonl"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_env()
    ai_enabled = _as_bool(os.getenv("AI_ENABLED"), False)
    ai_provider = os.getenv("AI_PROVIDER", "stub")
    openai_api_key = os.getenv("OPENAI_API_KEY")

    if ai_enabled and ai_provider == "openai" and not openai_api_key:
        raise RuntimeError(
            "OPENAI_API_KEY required when AI_PROVIDER=openai and AI_ENABLED=true"
        )
    defaults = Settings()
    return Settings(
        db_path=os.getenv("DB_PATH", defaults.db_path),
        run_env=os.getenv("RUN_ENV", defaults.run_env),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        openai_api_key=openai_api_key,
        openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
        ai_enabled=ai_enabled,
        ai_provider=ai_provider,
        profile_api_base_url=os.getenv("PROFILE_API_BASE_URL", defaults.profile_api_base_url),
        profile_api_key=os.getenv("PROFILE_API_KEY"),
        profile_accounts=_as_list(os.getenv("PROFILE_ACCOUNTS")),
        account_daily_limit=int(os.getenv("ACCOUNT_DAILY_LIMIT", str(defaults.account_daily_limit))),
        http_timeout_seconds=int(os.getenv("HTTP_TIMEOUT_SECONDS", str(defaults.http_timeout_seconds))),
        call_spacing_min_seconds=float(os.getenv("CALL_SPACING_MIN_SECONDS", str(defaults.call_spacing_min_seconds))),
        call_spacing_max_seconds=float(os.getenv("CALL_SPACING_MAX_SECONDS", str(defaults.call_spacing_max_seconds))),
        call_max_attempts=int(os.getenv("CALL_MAX_ATTEMPTS", str(defaults.call_max_attempts))),
        call_backoff_base_seconds=float(os.getenv("CALL_BACKOFF_BASE_SECONDS", str(defaults.call_backoff_base_seconds))),
        call_backoff_cap_seconds=float(os.getenv("CALL_BACKOFF_CAP_SECONDS", str(defaults.call_backoff_cap_seconds))),
        operation_timeout_minutes=int(os.getenv("OPERATION_TIMEOUT_MINUTES", str(defaults.operation_timeout_minutes))),
        stage_max_retries=int(os.getenv("STAGE_MAX_RETRIES", str(defaults.stage_max_retries))),
        stage_retry_delay_seconds=int(os.getenv("STAGE_RETRY_DELAY_SECONDS", str(defaults.stage_retry_delay_seconds))),
        batch_size=int(os.getenv("BATCH_SIZE", str(defaults.batch_size))),
        concurrency=int(os.getenv("CONCURRENCY", str(defaults.concurrency))),
        sub_batch_pause_seconds=float(os.getenv("SUB_BATCH_PAUSE_SECONDS", str(defaults.sub_batch_pause_seconds))),
        dispatch_workers=int(os.getenv("DISPATCH_WORKERS", str(defaults.dispatch_workers))),
        enrichment_cache_days=int(os.getenv("ENRICHMENT_CACHE_DAYS", str(defaults.enrichment_cache_days))),
        stale_after_hours=int(os.getenv("STALE_AFTER_HOURS", str(defaults.stale_after_hours))),
        requalify_lookback_days=int(os.getenv("REQUALIFY_LOOKBACK_DAYS", str(defaults.requalify_lookback_days))),
        requeue_priority_penalty=int(os.getenv("REQUEUE_PRIORITY_PENALTY", str(defaults.requeue_priority_penalty))),
        emergency_window_hours=int(os.getenv("EMERGENCY_WINDOW_HOURS", str(defaults.emergency_window_hours))),
        target_languages=_as_list(os.getenv("TARGET_LANGUAGES")) or defaults.target_languages,
        target_locations=_as_list(os.getenv("TARGET_LOCATIONS")) or defaults.target_locations,
        llm_trace=_as_bool(os.getenv("LLM_TRACE"), False),
        llm_log_path=os.getenv("LLM_LOG_PATH", defaults.llm_log_path),
    )
