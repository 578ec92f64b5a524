from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./ingest.db"

    # OAuth2 client credentials per provider
    garmin_client_id: str = ""
    garmin_client_secret: str = ""
    suunto_client_id: str = ""
    suunto_client_secret: str = ""
    suunto_subscription_key: str = ""
    coros_client_id: str = ""
    coros_client_secret: str = ""
    coros_use_staging: bool = False

    # Queue processing
    max_retry_count: int = 10
    queue_batch_limit: int = 200
    failed_jobs_ttl_days: int = 7

    # Token lifecycle
    token_expiry_buffer_ms: int = 6000  # subtracted from the provider's reported expiry

    # Timeouts
    http_timeout_seconds: float = 30.0
    backfill_timeout_seconds: float = 300.0

    # Backfill cooldowns (each provider has its own policy)
    garmin_backfill_cooldown_days: int = 14
    history_items_per_cooldown_day: int = 500
    coros_history_limit_months: int = 3

    # Scheduler
    token_refresh_interval_hours: int = 6
    queue_drain_interval_minutes: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
