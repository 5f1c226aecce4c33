"""Centralized configuration management for ledgersync.

This module provides a Pydantic Settings-based configuration system that
consolidates transport and logging settings with environment variable
integration, type validation, and clear error handling.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HttpConfig(BaseModel):
    """HTTP transport configuration settings."""

    model_config = ConfigDict(frozen=True)

    timeout: float = Field(
        default=30.0, gt=0, le=600, description="Connect/read timeout in seconds"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum HTML form submission attempts (CSRF token refresh)",
    )
    retry_delay: float = Field(
        default=0.1,
        ge=0.0,
        le=10.0,
        description="Delay between HTML form submission attempts in seconds",
    )
    user_agent: str = Field(
        default="ledgersync", description="User-Agent header sent to the server"
    )


class LoggingConfig(BaseModel):
    """Logging configuration settings."""

    model_config = ConfigDict(frozen=True)

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_to_file: bool = Field(default=False, description="Enable file logging")
    log_file_path: Path = Field(
        default=Path("logs/ledgersync.log"), description="Path to log file"
    )
    max_file_size_mb: int = Field(
        default=10, ge=1, le=1000, description="Maximum log file size in MB"
    )
    backup_count: int = Field(
        default=5, ge=1, le=50, description="Number of log file backups to keep"
    )


class LedgerSyncSettings(BaseSettings):
    """Main application settings with environment variable integration.

    Environment variables are loaded with the LEDGERSYNC_ prefix.
    For nested configs, use double underscores: LEDGERSYNC_HTTP__TIMEOUT
    """

    http: HttpConfig = Field(default_factory=HttpConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    debug: bool = Field(default=False, description="Enable debug mode")
    default_currency: str = Field(
        default="",
        description="Currency used for transaction lines that do not name one",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LEDGERSYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("default_currency")
    @classmethod
    def validate_default_currency(cls, v: str) -> str:
        """Reject currency symbols containing whitespace."""
        if any(ch.isspace() for ch in v):
            raise ValueError("Default currency must not contain whitespace")
        return v


_settings: LedgerSyncSettings | None = None


def get_settings() -> LedgerSyncSettings:
    """Get the settings instance.

    Settings are loaded once and cached for the lifetime of the process.

    Returns:
        LedgerSyncSettings: The configuration instance

    Raises:
        ValueError: If the configuration is invalid
    """
    global _settings

    if _settings is not None:
        return _settings

    try:
        _settings = LedgerSyncSettings()
    except Exception as e:
        raise ValueError(f"Configuration error: {e}") from e
    return _settings


def reload_settings() -> LedgerSyncSettings:
    """Reload settings from environment variables.

    Useful for testing or when environment variables change at runtime.

    Returns:
        LedgerSyncSettings: The reloaded configuration instance
    """
    clear_settings_cache()
    return get_settings()


def clear_settings_cache() -> None:
    """Drop the cached settings instance."""
    global _settings
    _settings = None


def get_http_config() -> HttpConfig:
    """Get the HTTP transport configuration.

    Returns:
        HttpConfig: The HTTP configuration
    """
    return get_settings().http


def get_logging_config() -> LoggingConfig:
    """Get the logging configuration.

    Returns:
        LoggingConfig: The logging configuration
    """
    return get_settings().logging
