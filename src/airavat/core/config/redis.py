"""
Redis connection settings.
"""
from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings
import structlog

logger = structlog.get_logger(__name__)


class RedisSettings(BaseSettings):
    """
    Defines settings for the Redis connection used by the counter store and the
    circuit state mirror.

    Security Note:
        - REDIS_PASSWORD must be set in staging and production.
        - Use REDIS_SSL (rediss://) when Redis is reached over an untrusted network.
    """
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = Field(ge=1, le=65535, default=6379)
    REDIS_PASSWORD: SecretStr = Field(default=SecretStr(""), validate_default=True)
    REDIS_SSL: bool = False
    REDIS_DB: int = Field(ge=0, default=0)
    REDIS_SOCKET_TIMEOUT: float = Field(gt=0, default=2.0)
    REDIS_URL: str = Field(default="", validate_default=True)

    @field_validator("REDIS_PASSWORD")
    @classmethod
    def validate_redis_password(cls, value: SecretStr, info: ValidationInfo) -> SecretStr:
        """
        Ensures REDIS_PASSWORD is set for staging/production environments.

        Raises:
            ValueError: If password is not set in staging/production.
        """
        app_env = info.data.get("APP_ENV", "development")
        if app_env in ["staging", "production"] and not value.get_secret_value():
            logger.error("redis_password_missing", env=app_env)
            raise ValueError("REDIS_PASSWORD must be set in staging/production environments")
        return value

    @field_validator("REDIS_URL", mode="before")
    @classmethod
    def assemble_redis_url(cls, v: str | None, info: ValidationInfo) -> str:
        """
        Assembles the Redis connection URL if not provided explicitly.

        Args:
            v: Explicitly provided URL or None.
            info: Validation context with other field values.

        Returns:
            Assembled or provided Redis URL.
        """
        if v:
            return v

        values = info.data
        protocol = "rediss" if values.get("REDIS_SSL") else "redis"
        redis_password = values.get("REDIS_PASSWORD")
        secret = redis_password.get_secret_value() if isinstance(redis_password, SecretStr) else ""
        password = f":{secret}@" if secret else ""

        url = f"{protocol}://{password}{values.get('REDIS_HOST')}:{values.get('REDIS_PORT')}/{values.get('REDIS_DB', 0)}"
        logger.debug("redis_url_assembled")
        return url
