"""Configuration settings for the payment application sync tools."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase
    supabase_url: str = Field(..., validation_alias="SUPABASE_URL")
    supabase_anon_key: SecretStr = Field(..., validation_alias="SUPABASE_ANON_KEY")
    supabase_email: str | None = Field(default=None, validation_alias="SUPABASE_EMAIL")
    supabase_password: SecretStr | None = Field(
        default=None, validation_alias="SUPABASE_PASSWORD"
    )
    supabase_timeout: float = Field(default=30.0, validation_alias="SUPABASE_TIMEOUT")
    supabase_max_retries: int = Field(default=2, validation_alias="SUPABASE_MAX_RETRIES")

    # Batch fetch
    batch_size: int = Field(default=200, ge=1, validation_alias="BATCH_SIZE")
    concurrency: int = Field(default=5, ge=1, validation_alias="CONCURRENCY")
    group_delay: float = Field(default=0.01, ge=0, validation_alias="GROUP_DELAY")
    batch_delay: float = Field(default=0.2, ge=0, validation_alias="BATCH_DELAY")
    fetch_limit: int = Field(default=5000, ge=1, validation_alias="FETCH_LIMIT")

    # Resync
    resync_batch_size: int = Field(default=50, ge=1, validation_alias="RESYNC_BATCH_SIZE")
    resync_delay: float = Field(default=0.5, ge=0, validation_alias="RESYNC_DELAY")

    # Logging
    log_limit: int = Field(default=5000, ge=1, validation_alias="LOG_LIMIT")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
