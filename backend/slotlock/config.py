# backend/slotlock/config.py

from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/slotlock.db"
    redis_url: str = ""

    # Slot locks
    slot_lock_duration_minutes: int = Field(5, ge=1)
    slot_sweep_interval_seconds: int = Field(60, ge=1)
    enable_slot_cleanup: bool = True

    # Cache categories
    cache_ttl_general: int = 60
    cache_ttl_slot: int = 300
    cache_check_period: int = 60

    default_meeting_duration: int = 30
    notification_max_attempts: int = 3

    # Google Calendar
    google_client_id: str = ""
    google_client_secret: str = ""
    token_encryption_key: str = ""

    # Email
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    email_from_address: str = "bookings@localhost"

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @field_validator("redis_url", "smtp_host", "token_encryption_key", mode="after")
    @classmethod
    def strip_value(cls, v: str) -> str:
        return (v or "").strip()

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
