"""Admin API Response Schemas

Pydantic schemas for the circuit breaker and rate limit admin endpoints.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class CircuitBreakerListResponse(BaseModel):
    """Response schema for listing circuit breakers."""

    circuit_breakers: Dict[str, Dict[str, Any]] = Field(..., description="Status per dependency")
    open_circuits: List[str] = Field(..., description="Dependencies currently isolated")
    count: int = Field(..., description="Total number of circuit breakers")


class CircuitBreakerResetResponse(BaseModel):
    """Response schema for manual circuit resets."""

    message: str = Field(..., description="Operation result message")
    reset: List[str] = Field(..., description="Names of the breakers that were reset")


class RateLimitResetResponse(BaseModel):
    """Response schema for counter resets."""

    message: str = Field(..., description="Operation result message")
    scope: str = Field(..., description="The limiter scope")
    identity: str = Field(..., description="The identity whose counter was cleared")
    deleted: bool = Field(..., description="Whether a counter existed")
