"""Configuration package."""

from household_sync.config.settings import (
    AppSettings,
    Settings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "Settings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]
