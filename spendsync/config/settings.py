"""
Configuration Management for SpendSync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Budget bounds, the display timezone and the currency format are
configuration, not business law. They are validated once at startup.
"""

from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SupabaseSettings(BaseSettings):
    """Store-of-record and realtime feed configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        ...,
        description="Supabase project URL"
    )
    key: str = Field(
        ...,
        description="Supabase anon or service key"
    )

    # Table names within the public schema
    db_schema: str = Field(
        default="public",
        description="Database schema holding the tables"
    )
    transactions_table: str = Field(
        default="transactions",
        description="Table holding transaction records"
    )
    family_members_table: str = Field(
        default="family_members",
        description="Table holding family memberships"
    )

    @property
    def is_local(self) -> bool:
        """Local CLI stacks do not issue JWT keys the realtime service accepts."""
        return "127.0.0.1" in self.url or "localhost" in self.url


class BudgetSettings(BaseSettings):
    """Default spending bounds used when a period has none configured."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    upper_limit: int = Field(
        default=250000,
        ge=0,
        description="Spending above this is 'over'"
    )
    lower_limit: int = Field(
        default=210000,
        ge=0,
        description="Spending below this is 'under'"
    )

    @model_validator(mode='after')
    def validate_bounds(self) -> 'BudgetSettings':
        if self.lower_limit > self.upper_limit:
            raise ValueError("Budget lower limit cannot exceed upper limit")
        return self


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

    # Period bucketing
    timezone: str = Field(
        default="Asia/Jakarta",
        description="IANA timezone used for 'today' and month boundaries"
    )

    # Visibility
    family_inclusive: bool = Field(
        default=True,
        description="Show transactions of every member of the viewer's families"
    )
    realtime_enabled: bool = Field(
        default=True,
        description="Subscribe to live change feeds"
    )

    # Presentation of amounts
    uncategorized_label: str = Field(
        default="Uncategorized",
        min_length=1,
        description="Bucket label for transactions without a category"
    )
    currency_symbol: str = Field(
        default="Rp",
        description="Currency prefix used when formatting amounts"
    )
    thousands_separator: str = Field(
        default=".",
        max_length=1,
        description="Digit grouping separator"
    )
    decimal_separator: str = Field(
        default=",",
        max_length=1,
        description="Decimal separator"
    )

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @model_validator(mode='after')
    def validate_separators(self) -> 'AppSettings':
        if self.thousands_separator == self.decimal_separator:
            raise ValueError("Thousands and decimal separators must differ")
        return self


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def supabase(self) -> SupabaseSettings:
        return SupabaseSettings()

    @property
    def budget(self) -> BudgetSettings:
        return BudgetSettings()

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


def validate_all_settings() -> dict[str, Optional[bool | str]]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus
    {setting_name}_error entries for the groups that failed.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("supabase", "budget", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
