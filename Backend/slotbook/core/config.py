from functools import lru_cache
from typing import List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    row_store: Literal["sheets", "memory"] = Field(default="sheets", alias="ROW_STORE")

    # Google Sheets
    sheet_id: str = Field(default="", alias="SHEET_ID")
    slots_gid: int = Field(default=0, alias="SLOTS_GID")
    signups_gid: int = Field(default=0, alias="SIGNUPS_GID")
    google_service_account: str = Field(default="", alias="GOOGLE_SERVICE_ACCOUNT")
    google_service_account_email: str = Field(default="", alias="GOOGLE_SERVICE_ACCOUNT_EMAIL")
    google_private_key: str = Field(default="", alias="GOOGLE_PRIVATE_KEY")
    sheets_timeout_seconds: float = Field(default=15.0, alias="SHEETS_TIMEOUT_SECONDS")

    timezone: str = Field(default="America/New_York", alias="TIMEZONE")

    # Booking engine
    cache_ttl_seconds: float = Field(default=30.0, alias="CACHE_TTL_SECONDS")
    max_concurrent_bookings: int = Field(default=3, alias="MAX_CONCURRENT_BOOKINGS")
    max_slots_per_booking: int = Field(default=10, alias="MAX_SLOTS_PER_BOOKING")

    # Field bounds
    max_name_length: int = Field(default=100, alias="MAX_NAME_LENGTH")
    max_email_length: int = Field(default=254, alias="MAX_EMAIL_LENGTH")
    max_phone_length: int = Field(default=20, alias="MAX_PHONE_LENGTH")
    max_notes_length: int = Field(default=500, alias="MAX_NOTES_LENGTH")
    max_category_length: int = Field(default=50, alias="MAX_CATEGORY_LENGTH")

    # Per-client request limiter
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_max_requests: int = Field(default=50, alias="RATE_LIMIT_MAX_REQUESTS")

    admin_password: str = Field(default="", alias="ADMIN_PASSWORD")
    allowed_origins: str = Field(default="*", alias="ALLOWED_ORIGINS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=(".env", "Backend/.env"),
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("cache_ttl_seconds")
    @classmethod
    def positive_ttl(cls, v):
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator(
        "max_concurrent_bookings",
        "max_slots_per_booking",
        "rate_limit_max_requests",
    )
    @classmethod
    def at_least_one(cls, v):
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("google_private_key", mode="after")
    @classmethod
    def unescape_private_key(cls, v: str) -> str:
        # Keys pasted into env files usually carry literal "\n" sequences.
        return v.replace("\\n", "\n")

    @property
    def allowed_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
