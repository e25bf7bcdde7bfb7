# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for the metahub
migration engine. Settings are loaded from environment variables with
sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from src.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.migration.apply_lock_timeout_seconds)
    30.0
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATABASE_PASSWORD = "metahubs_password"


class DatabaseSettings(BaseSettings):
    """Platform database configuration.

    One PostgreSQL database holds the platform schema (metahubs, branches,
    templates) and every per-branch system schema.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
        pool_timeout: Seconds to wait for a pooled connection before
            the pool is reported as exhausted.
    """

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore",
    )

    user: str = "metahubs"
    password: SecretStr = SecretStr(DEFAULT_DATABASE_PASSWORD)
    host: str = "localhost"
    port: int = 5432
    database: str = "metahubs"
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: float = 30.0

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class MigrationSettings(BaseSettings):
    """Structure and template migration configuration.

    Attributes:
        apply_lock_timeout_seconds: How long an apply call waits for the
            per-branch advisory lock.
        schema_lock_timeout_seconds: How long schema initialization waits
            for the per-metahub schema lock.
        lock_poll_interval_seconds: Delay between advisory lock attempts.
        history_default_limit: Default page size for history listing.
        history_max_limit: Largest accepted page size for history listing.
        latest_migrations_limit: Rows returned with an apply result.
        default_template_codename: Built-in template used when a metahub
            has no template version.
    """

    model_config = SettingsConfigDict(
        env_prefix="MIGRATION_",
        extra="ignore",
    )

    apply_lock_timeout_seconds: float = Field(default=30.0, gt=0)
    schema_lock_timeout_seconds: float = Field(default=30.0, gt=0)
    lock_poll_interval_seconds: float = Field(default=0.25, gt=0)
    history_default_limit: int = Field(default=50, ge=1)
    history_max_limit: int = Field(default=100, ge=1)
    latest_migrations_limit: int = Field(default=10, ge=1)
    default_template_codename: str = "basic"


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        database: Platform database settings.
        migration: Migration engine settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    # Subsettings - loaded with their own env prefixes
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    migration: MigrationSettings = Field(default_factory=MigrationSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with insecure defaults.
        """
        if self.environment == "production":
            if self.database.password.get_secret_value() == DEFAULT_DATABASE_PASSWORD:
                raise ValueError(
                    "Database password must be changed from default in production. "
                    "Set DATABASE_PASSWORD environment variable."
                )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
