"""
Configuration module for the strategy wizard backend.

Provides settings management using pydantic-settings.
Supports loading from environment variables and .env files.
"""

from .settings import Settings, get_settings, reset_settings, has_api_token

__all__ = [
    "Settings",
    "get_settings",
    "reset_settings",
    "has_api_token",
]
