from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./aesthetech.db"
    database_echo: bool = False
    secret_key: str = "change-me"

    # Cron endpoint bearer token; empty disables the endpoint
    cron_secret: str = ""

    # Salon defaults applied when the settings row is first created
    salon_timezone: str = "UTC"
    business_hours_start: str = "09:00"
    business_hours_end: str = "19:00"

    # Loyalty expiry job
    loyalty_scheduler_enabled: bool = False
    loyalty_schedule_path: str = "config/schedules.toml"
    loyalty_expiry_lock_key: int = 8675309

    # Recurring series generation
    recurrence_max_occurrences: int = Field(default=100, ge=1)
    recurrence_never_horizon_months: int = Field(default=3, ge=1)
    recurrence_alternative_offsets_minutes: list[int] = Field(
        default_factory=lambda: [30, 60, 90, 120]
    )
    recurrence_max_alternatives: int = Field(default=4, ge=0)

    @field_validator("recurrence_alternative_offsets_minutes", mode="before")
    @classmethod
    def _parse_offset_list(cls, value: object) -> list[int]:
        if value is None:
            return []
        if isinstance(value, str):
            return [int(item.strip()) for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [int(item) for item in value]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
