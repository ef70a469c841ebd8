"""Configuration package."""

from spendsync.config.settings import (
    AppSettings,
    BudgetSettings,
    Settings,
    SupabaseSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "BudgetSettings",
    "Settings",
    "SupabaseSettings",
    "get_settings",
    "validate_all_settings",
]
