"""
Rate limiting settings.

Rules are declared as ``RateLimitRuleConfig`` models so that environment
overrides (JSON objects) are validated at startup and unknown keys are
rejected. Defaults mirror the marketplace's production limits.
"""
from typing import Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings

from airavat.domain.rate_limiting.value_objects import RateLimitRule


class RateLimitRuleConfig(BaseModel):
    """Declarative form of a rate limit rule, as found in settings."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    points: int = Field(gt=0)
    window_seconds: int = Field(gt=0)
    block_duration_seconds: int = Field(default=0, ge=0)

    def to_rule(self, scope: str) -> RateLimitRule:
        return RateLimitRule(
            scope=scope,
            points=self.points,
            window_seconds=self.window_seconds,
            block_duration_seconds=self.block_duration_seconds,
        )


def _rule(points: int, window_seconds: int, block_duration_seconds: int = 0) -> RateLimitRuleConfig:
    return RateLimitRuleConfig(
        points=points, window_seconds=window_seconds, block_duration_seconds=block_duration_seconds
    )


DEFAULT_TIER_LIMITS: Dict[str, RateLimitRuleConfig] = {
    "anonymous": _rule(30, 60, 60),
    "free": _rule(60, 60, 60),
    "basic": _rule(120, 60, 30),
    "professional": _rule(300, 60, 15),
    "enterprise": _rule(1000, 60),
    "admin": _rule(5000, 60),
}

DEFAULT_ENDPOINT_LIMITS: Dict[str, RateLimitRuleConfig] = {
    "/api/v1/auth/login": _rule(5, 60, 300),
    "/api/v1/auth/register": _rule(3, 60, 600),
    "/api/v1/auth/forgot-password": _rule(3, 300, 600),
    "/api/v1/auth/verify-otp": _rule(5, 60, 300),
    "/api/v1/search": _rule(30, 60),
    "/api/v1/products": _rule(60, 60),
    "/api/v1/orders": _rule(20, 60),
    "/api/v1/rfq": _rule(10, 60),
    "/api/v1/upload": _rule(10, 60, 300),
    "/api/v1/webhooks": _rule(100, 60),
}


class RateLimitSettings(BaseSettings):
    """
    Inbound rate limiting configuration.

    Performance Note:
        - 'fixed-window' is one Redis round trip per layer; 'sliding-window'
          is one as well but keeps a timestamp per point consumed, so it costs
          memory proportional to the limit; 'token-bucket' is two round trips
          and tolerates short bursts better.
    Availability Note:
        - RATE_LIMIT_FAIL_OPEN=True (default) keeps serving requests when the
          counter store is down, which temporarily removes DDoS protection.
          RATE_LIMIT_MEMORY_FALLBACK keeps per-process limits in that case.
    """
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_FAIL_OPEN: bool = True
    RATE_LIMIT_MEMORY_FALLBACK: bool = True
    RATE_LIMIT_STORAGE: str = Field(default="redis", pattern="^(redis|memory)$")
    RATE_LIMIT_STRATEGY: str = Field(default="fixed-window", pattern="^(fixed-window|sliding-window|token-bucket)$")
    RATE_LIMIT_KEY_PREFIX: str = "ratelimit"

    RATE_LIMIT_GLOBAL_ENABLED: bool = True
    RATE_LIMIT_GLOBAL: RateLimitRuleConfig = _rule(10000, 1, 60)
    RATE_LIMIT_BURST_ENABLED: bool = True
    RATE_LIMIT_BURST: RateLimitRuleConfig = _rule(20, 1, 10)
    RATE_LIMIT_TIERS: Dict[str, RateLimitRuleConfig] = Field(default_factory=lambda: dict(DEFAULT_TIER_LIMITS))
    RATE_LIMIT_ENDPOINTS: Dict[str, RateLimitRuleConfig] = Field(
        default_factory=lambda: dict(DEFAULT_ENDPOINT_LIMITS)
    )
    RATE_LIMIT_DEFAULT_TIER: str = "free"

    RATE_LIMIT_SKIP_PATHS: Union[str, List[str]] = Field(default="/api/v1/health,/api/v1/webhooks")
    RATE_LIMIT_SKIP_IPS: Union[str, List[str]] = Field(default="")
    RATE_LIMIT_SKIP_USER_IDS: Union[str, List[str]] = Field(default="")

    @field_validator("RATE_LIMIT_SKIP_PATHS", "RATE_LIMIT_SKIP_IPS", "RATE_LIMIT_SKIP_USER_IDS", mode="before")
    @classmethod
    def split_comma_separated(cls, v: Union[str, List[str]]) -> List[str]:
        """
        Splits a comma-separated string into a list.

        Args:
            v: Input value as a string or list.

        Returns:
            List of stripped, non-empty entries.
        """
        if isinstance(v, str):
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    @field_validator("RATE_LIMIT_DEFAULT_TIER")
    @classmethod
    def validate_default_tier(cls, value: str, info: ValidationInfo) -> str:
        """Ensures the default tier has a rule."""
        tiers = info.data.get("RATE_LIMIT_TIERS")
        if tiers is not None and value not in tiers:
            raise ValueError(f"RATE_LIMIT_DEFAULT_TIER {value!r} is not a configured tier")
        return value
