"""
Configuration Management for Household Sync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunables live here: debounce delays, reload retry
policy and display defaults. Nothing else in the package reads the
environment directly.
"""

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Timing and retry configuration for the mutation layer."""

    model_config = SettingsConfigDict(
        env_prefix="HOUSEHOLD_SYNC_",
        extra="ignore"
    )

    debounce_ms: int = Field(
        default=350,
        ge=0,
        le=10_000,
        description="Delay before a free-text or quantity edit is written"
    )
    event_debounce_ms: int = Field(
        default=400,
        ge=0,
        le=10_000,
        description="Delay before an event title/time/notes edit is written"
    )

    # Reload reads are retried on transport failures only
    reload_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum attempts for a collection reload"
    )
    reload_retry_min_wait_s: float = Field(
        default=0.5,
        ge=0.0,
        description="Minimum wait between reload attempts (seconds)"
    )
    reload_retry_max_wait_s: float = Field(
        default=4.0,
        ge=0.0,
        description="Maximum wait between reload attempts (seconds)"
    )

    @model_validator(mode="after")
    def validate_retry_window(self) -> "SyncSettings":
        if self.reload_retry_max_wait_s < self.reload_retry_min_wait_s:
            raise ValueError("reload_retry_max_wait_s cannot be below reload_retry_min_wait_s")
        return self

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    @property
    def event_debounce_seconds(self) -> float:
        return self.event_debounce_ms / 1000


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    # Display
    default_household_name: str = Field(
        default="Household",
        min_length=1,
        description="Shown while a household has no name"
    )
    currency_code: str = Field(
        default="SEK",
        min_length=3,
        max_length=3,
        description="ISO currency code used when formatting minor units"
    )
    member_label_prefix_length: int = Field(
        default=6,
        ge=1,
        le=36,
        description="How many characters of a user id to show when a member has no name"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("currency_code")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.sync
        results["sync"] = True
    except Exception as e:
        results["sync"] = False
        results["sync_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
