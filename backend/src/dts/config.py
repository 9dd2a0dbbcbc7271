"""
Application configuration loaded from environment variables.

All configuration is validated at startup to fail fast on misconfiguration.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with validation.

    All settings are loaded from environment variables prefixed with DTS_.
    Use .env file for local development.
    """

    model_config = SettingsConfigDict(
        env_prefix="DTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./dts.db",
        description="SQLAlchemy async connection string (aiosqlite or asyncpg driver)"
    )
    storage_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound for one unit of work before it is rolled back as retryable"
    )

    # Ledger policy
    receiver_assignment: Literal["round_robin", "least_loaded"] = Field(
        default="round_robin",
        description="Deterministic rule for binding a new donation's allocation to a receiver"
    )
    enforce_campaign_end_date: bool = Field(
        default=True,
        description="Reject donations outside a campaign's start and end dates"
    )

    # Server
    debug: bool = Field(
        default=False,
        description="Enable debug mode with detailed error messages"
    )
    cors_origins: list[str] = Field(
        default_factory=list,
        description="Allowed CORS origins (all origins in debug mode)"
    )

    @property
    def is_sqlite(self) -> bool:
        """SQLite allows a single writer, so writes are serialized globally."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once at startup and cached for subsequent calls.
    This ensures consistent configuration across the application lifecycle.
    """
    return Settings()
