from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    debug: bool = False
    cors_origins: list[str] = ["http://localhost:3000"]

    # Persistence - "memory" keeps records in-process, "sql" uses database_url
    persistence_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite+aiosqlite:///./helpshelf_onboarding.db"

    # AI / Anthropic (used by the AI processing stage)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"

    # Integration setup - empty string = no webhook, stage succeeds without a call
    integration_webhook_url: str = ""

    # Outbound HTTP for domain validation and crawling
    http_timeout_seconds: float = 15.0
    crawl_max_pages: int = 10

    # Analysis pipeline
    stage_timeout_seconds: int = 300
    stall_timeout_minutes: int = 10
    default_eta_seconds: int = 120
    max_restarts: int = 3
    # Cross-session worker pool size (concurrent analysis runs per process)
    max_concurrent_analyses: int = 10
    # Interval the frontend is told to poll at
    poll_interval_seconds: int = 2

    # Scheduler settings
    # Enable/disable the internal APScheduler (set False for local dev to avoid noise)
    scheduler_enabled: bool = True
    stall_sweep_interval_seconds: int = 60
    # Hours after which idle/finished sessions are purged (0 = never, expiry is external)
    session_ttl_hours: int = 0


settings = Settings()
