from datetime import datetime, timezone
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import os

class Settings(BaseSettings):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./countdown.db")
    redis_url: str = os.getenv("REDIS_URL", "")
    vapid_public_key: str = ""
    vapid_private_key: str = ""
    vapid_subject: str = ""
    cron_secret: str = ""
    cors_origins: str = "http://localhost:3000"
    log_level: str = "INFO"

    countdown_target: datetime = datetime(2026, 11, 19, 5, 0, tzinfo=timezone.utc)
    countdown_title: str = "GTA VI"
    notification_icon: str = "/apple-touch-icon.png"
    notification_url: str = "/"

    milestone_tolerance_seconds: int = 60
    broadcast_suppress_seconds: int = 3600
    push_ttl_seconds: int = 86400
    push_max_concurrency: int = 50

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("countdown_target")
    @classmethod
    def target_as_utc(cls, v: datetime) -> datetime:
        # Naive timestamps in the environment are read as UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("vapid_public_key", "vapid_private_key", "cron_secret", mode="before")
    @classmethod
    def strip_secret(cls, v: str | None) -> str:
        return (v or "").strip()

settings = Settings()
