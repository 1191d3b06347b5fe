"""
Application configuration using Pydantic Settings.
All config is loaded from environment variables / .env file.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    # ── App ──────────────────────────────────────────────
    APP_NAME: str = "eventhub"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"  # comma-separated

    # ── Supabase ─────────────────────────────────────────
    SUPABASE_URL: str
    SUPABASE_KEY: str  # anon/public key
    SUPABASE_SERVICE_KEY: str = ""  # service_role key (engine writes bypass RLS)

    # ── Security ─────────────────────────────────────────
    JWT_SECRET_KEY: str  # JWT signing key (tokens issued by the auth service)
    JWT_ALGORITHM: str = "HS256"

    # ── Events ───────────────────────────────────────────
    SOFT_DELETE_EVENTS: bool = False  # True = delete writes status "deleted"

    # ── Recurrence ───────────────────────────────────────
    RECURRENCE_HORIZON_MONTHS: int = 12  # materialize instances up to end + N months
    RECURRENCE_MAX_INSTANCES: int = 366

    # ── Paging ───────────────────────────────────────────
    PAGE_DEFAULT_LIMIT: int = 20
    PAGE_MAX_LIMIT: int = 100

    # ── Background tasks ─────────────────────────────────
    TASK_TIMEOUT_SECONDS: float = 10.0
    TASK_FAILURE_HISTORY: int = 200  # recent failures kept for inspection

    # ── Reminders ────────────────────────────────────────
    REMINDER_POLL_INTERVAL_SECONDS: int = 60
    REMINDER_BATCH_SIZE: int = 100

    # ── Notifications ────────────────────────────────────
    NOTIFICATION_WEBHOOK_URL: str = ""  # empty = notifications are logged and dropped
    NOTIFICATION_TIMEOUT_SECONDS: float = 15.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance (singleton)."""
    return Settings()
