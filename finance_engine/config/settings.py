"""
Configuration Management for the Finance Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Tunable engine behaviour (alert suppression window, concurrency retry
budget, ledger conventions) and storage credentials are validated once,
at startup, instead of being scattered as constants.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Accounting and alerting behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="FINANCE_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    alert_dedup_window_hours: float = Field(
        default=24.0,
        gt=0,
        description="Minimum spacing between repeated alerts for one budget"
    )
    default_alert_threshold: float = Field(
        default=80.0,
        gt=0,
        le=100,
        description="Threshold percent used when a budget does not set one"
    )
    large_transaction_threshold: float = Field(
        default=1000.0,
        ge=0,
        description="Absolute amount above which a transaction alert is raised"
    )
    max_update_attempts: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Optimistic-concurrency attempts before giving up"
    )
    savings_category: str = Field(
        default="savings",
        description="Ledger category used for goal contributions"
    )
    contribution_subcategory: str = Field(
        default="goal_contribution",
        description="Ledger subcategory used for goal contributions"
    )
    default_currency: str = Field(default="USD", max_length=3)
    default_page_size: int = Field(default=20, ge=1, le=500)


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    ledger_sheet_name: str = Field(
        default="Ledger",
        description="Name of the sheet for ledger entries"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


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
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )
    use_google_sheets: bool = Field(
        default=False,
        description="Persist ledger and audit log to Google Sheets"
    )


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

    # Note: sub-settings are loaded lazily so Google Sheets credentials
    # are only required when that backend is actually used.

    @property
    def engine(self) -> EngineSettings:
        return EngineSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
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

    for name in ("engine", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
