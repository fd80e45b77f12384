"""Main application settings and configuration management.

This module composes the settings of every concern (app, redis, rate
limiting, circuit breakers) into a single `Settings` class and exposes the
singleton `settings`.

Environment Support:
- Development: Uses .env
- Test: Uses .env.test when present
- Staging: Uses .env.staging when present
- Production: Uses .env.production when present

No setting is required, so the package imports cleanly in tests; staging and
production additionally demand a Redis password.
"""

import os
from pathlib import Path

import structlog
from pydantic_settings import SettingsConfigDict

from .app import AppSettings
from .circuit_breakers import CircuitBreakerSettings
from .rate_limiting import RateLimitSettings
from .redis import RedisSettings

logger = structlog.get_logger(__name__)


class Settings(CircuitBreakerSettings, RateLimitSettings, RedisSettings, AppSettings):
    """The main settings class that aggregates all application configurations.

    AppSettings is the last base so its fields (APP_ENV in particular) are
    validated first and visible to the validators of the other groups.

    Usage:
        - Access settings via the singleton instance `settings` throughout the application.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )


def create_settings() -> Settings:
    """Create settings instance with environment-specific configuration.

    Returns:
        Settings: Configured settings instance
    """
    env = os.getenv("APP_ENV", "development")

    # Determine which .env file to use
    env_files = {
        "development": ".env",
        "test": ".env.test",
        "staging": ".env.staging",
        "production": ".env.production",
    }

    env_file = env_files.get(env, ".env")

    if env != "development" and Path(env_file).exists():
        logger.info("settings_env_file_loaded", env_file=env_file, env=env)
        return Settings(_env_file=env_file)

    if not Path(".env").exists():
        logger.debug("settings_env_file_missing", env=env)
    return Settings()


# Create a singleton instance of the settings to be used across the application.
settings = create_settings()
