from __future__ import annotations

"""
Global exception handlers for the FastAPI application.

This module contains centralized handlers for custom application exceptions,
translating them into appropriate HTTP responses. Dependency failures never
leak internal error text to clients.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status
from structlog import get_logger

from airavat.core.exceptions import (
    AiravatError,
    CircuitBreakerError,
    DependencyTimeoutError,
    RateLimitExceededError,
    RetryExhaustedError,
)

__all__ = [
    "rate_limit_exceeded_error_handler",
    "circuit_breaker_error_handler",
    "dependency_unavailable_error_handler",
    "airavat_error_handler",
    "rate_limit_response",
    "register_exception_handlers",
]

logger = get_logger(__name__)


def rate_limit_response(decision, label: str, headers=None) -> JSONResponse:
    """Build the 429 response for a denying rate limit decision.

    Args:
        decision: The denying `RateLimitDecision`.
        label: Layer reported to the client: `global`, `burst`, `endpoint`
            or the tier name.
        headers: Headers to send; the decision's own headers when omitted.
    """
    retry_after = decision.retry_after
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "success": False,
            "error": "Too many requests",
            "code": "RATE_LIMIT_EXCEEDED",
            "tier": label,
            "retryAfter": retry_after,
            "message": f"Rate limit exceeded. Please retry after {retry_after} seconds.",
        },
        headers=headers if headers is not None else decision.to_http_headers(),
    )


async def rate_limit_exceeded_error_handler(
    request: Request, exc: RateLimitExceededError
) -> JSONResponse:
    """Handles `RateLimitExceededError`, returning a `429 Too Many Requests`.

    Raised by per-route rate limit dependencies. The response carries the
    same body and headers as the rate limit middleware.

    Args:
        request: The incoming `Request` object.
        exc: The `RateLimitExceededError` instance.

    Returns:
        A `JSONResponse` with a 429 status code and rate limit headers.
    """
    logger.warning(
        "rate_limit_exceeded_error",
        scope=exc.decision.scope,
        client_ip=request.client.host if request.client else None,
        path=request.url.path,
    )
    return rate_limit_response(exc.decision, exc.decision.scope)


async def circuit_breaker_error_handler(request: Request, exc: CircuitBreakerError) -> JSONResponse:
    """Handles `CircuitBreakerError`, returning a `503 Service Unavailable`.

    The circuit for a dependency is open; clients are told when to retry.
    """
    logger.warning("circuit_open_response", dependency=exc.dependency, path=request.url.path)
    retry_after = max(1, exc.retry_after)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "success": False,
            "error": "Service temporarily unavailable",
            "code": exc.code,
            "dependency": exc.dependency,
            "retryAfter": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )


async def dependency_unavailable_error_handler(request: Request, exc: AiravatError) -> JSONResponse:
    """Handles `RetryExhaustedError` and `DependencyTimeoutError` with a `503`.

    The underlying error is logged, never returned.
    """
    original = getattr(exc, "original_error", None)
    logger.error(
        "dependency_unavailable",
        error=exc.code,
        detail=exc.message,
        original_error=str(original) if original else None,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "success": False,
            "error": "Dependency unavailable, please try again later",
            "code": exc.code,
        },
    )


async def airavat_error_handler(request: Request, exc: AiravatError) -> JSONResponse:
    """Handles any other `AiravatError`, returning a `500 Internal Server Error`."""
    logger.error("unhandled_application_error", error=exc.code, detail=exc.message, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Internal server error", "code": exc.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application.

    Args:
        app (FastAPI): The FastAPI application instance
    """
    app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_error_handler)
    app.add_exception_handler(CircuitBreakerError, circuit_breaker_error_handler)
    app.add_exception_handler(RetryExhaustedError, dependency_unavailable_error_handler)
    app.add_exception_handler(DependencyTimeoutError, dependency_unavailable_error_handler)
    app.add_exception_handler(AiravatError, airavat_error_handler)
