"""Middleware configuration for the FastAPI application.

This module handles the registration of all middleware components: CORS and
inbound rate limiting.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from airavat.adapters.http.rate_limit import rate_limit_middleware
from airavat.core.config.settings import settings


def configure_middleware(app: FastAPI) -> None:
    """Configure all middleware for the FastAPI application.

    Args:
        app (FastAPI): The FastAPI application instance
    """
    # Rate limiting middleware
    if settings.RATE_LIMIT_ENABLED:
        app.middleware("http")(rate_limit_middleware)

    # CORS middleware configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )
