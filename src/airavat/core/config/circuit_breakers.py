"""
Circuit breaker settings.

``CIRCUIT_BREAKERS`` holds per-dependency overrides; any dependency without
an entry uses ``CIRCUIT_BREAKER_DEFAULTS``. Values are validated as
``CircuitBreakerConfig`` models, so unknown keys fail at startup.
"""
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings

from airavat.domain.resilience.circuit_breaker import CircuitBreakerConfig


def _config(failure: int, success: int, timeout: float, reset: float) -> CircuitBreakerConfig:
    return CircuitBreakerConfig(
        failure_threshold=failure, success_threshold=success, timeout=timeout, reset_timeout=reset
    )


DEFAULT_CIRCUIT_BREAKERS: Dict[str, CircuitBreakerConfig] = {
    "payment-gateway": _config(3, 2, 30, 60),
    "shipping-shiprocket": _config(5, 3, 20, 120),
    "shipping-delhivery": _config(5, 3, 20, 120),
    "gst-service": _config(3, 2, 45, 300),
    "email-provider": _config(5, 3, 10, 60),
    "sms-provider": _config(5, 3, 10, 60),
    "search-index": _config(3, 2, 5, 30),
    "external-api": _config(5, 3, 15, 120),
}


class CircuitBreakerSettings(BaseSettings):
    """
    Outbound circuit breaker configuration.

    Note:
        - The Redis mirror is advisory; disabling it never changes breaker
          behaviour, only cross-process visibility.
    """
    CIRCUIT_BREAKER_DEFAULTS: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    CIRCUIT_BREAKERS: Dict[str, CircuitBreakerConfig] = Field(
        default_factory=lambda: dict(DEFAULT_CIRCUIT_BREAKERS)
    )
    CIRCUIT_STATE_MIRROR_ENABLED: bool = True
    CIRCUIT_STATE_TTL_SECONDS: int = Field(default=300, gt=0)
