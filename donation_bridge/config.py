"""Configuration settings for the donation bridge reconciler."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_key: str = ""

    # Bridge monitor
    bridge_monitor_base_url: str = ""
    bridge_request_timeout_seconds: float = 30.0

    # Reconciliation (cron "*/5 * * * *")
    reconcile_interval_minutes: int = 5
    reconcile_batch_limit: int = 100
    bridge_expiry_days: int = 60
    recompute_milestone_on_cancel: bool = False
    scheduler_enabled: bool = True

    # Milestones
    zero_address: str = "0x0000000000000000000000000000000000000000"

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
