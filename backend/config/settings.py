"""
Application Settings and Configuration.

Loads configuration from environment variables and config files.
Covers the strategy backend connection, symbol search tuning and logging.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables:
        STRATWIZ_API_BASE_URL: Base URL of the strategy REST backend
        STRATWIZ_API_TOKEN: Bearer token sent to the backend (optional)
        STRATWIZ_SEARCH_DEBOUNCE_MS: Symbol search debounce interval (default: 300)
        LOG_LEVEL: Root log level (default: INFO)
    """

    # Strategy backend connection
    api_base_url: str = Field(default="http://localhost:8000/api", alias="STRATWIZ_API_BASE_URL")
    api_timeout_seconds: float = Field(default=15.0, alias="STRATWIZ_API_TIMEOUT_SECONDS")
    api_token: Optional[str] = Field(default=None, alias="STRATWIZ_API_TOKEN")

    @field_validator("api_token")
    @classmethod
    def validate_api_token(cls, v):
        """Strip whitespace from the token to prevent authentication failures."""
        return v.strip() if v else v

    # Symbol search
    search_debounce_ms: int = Field(default=300, alias="STRATWIZ_SEARCH_DEBOUNCE_MS")
    search_min_query_length: int = Field(default=2, alias="STRATWIZ_SEARCH_MIN_QUERY_LENGTH")

    # Review step webhook messages
    webhook_base_url: str = Field(default="http://localhost:8000/api/webhook", alias="STRATWIZ_WEBHOOK_BASE_URL")

    # Application Configuration
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_directory: Optional[str] = Field(default=None, alias="STRATWIZ_LOG_DIRECTORY")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def search_debounce_seconds(self) -> float:
        """Debounce interval in seconds, as asyncio expects it."""
        return max(0, self.search_debounce_ms) / 1000.0


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None


def has_api_token() -> bool:
    """
    Check if a backend bearer token is configured.

    Returns:
        True if the token is set and non-empty
    """
    settings = get_settings()
    return settings.api_token is not None and settings.api_token != ""
