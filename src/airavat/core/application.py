"""Application factory for creating and configuring the FastAPI application.

This module provides a factory function to create a properly configured FastAPI application
with all necessary middleware, exception handlers, and routers registered.
"""

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from airavat.adapters.api.v1 import api_router
from airavat.core.config.settings import settings
from airavat.core.handlers import register_exception_handlers
from airavat.core.lifecycle import create_lifespan_manager
from airavat.core.middleware import configure_middleware


def create_application(**lifespan_options) -> FastAPI:
    """Create and configure the FastAPI application.

    This factory function creates a FastAPI application with all necessary
    configuration, middleware, exception handlers, and routers.

    Args:
        **lifespan_options: Forwarded to ``create_lifespan_manager`` (store,
            clock or Redis client overrides).

    Returns:
        FastAPI: The configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=settings.DESCRIPTION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=create_lifespan_manager(**lifespan_options),
        default_response_class=JSONResponse,
    )

    # Configure middleware
    configure_middleware(app)

    # Register exception handlers
    register_exception_handlers(app)

    # Include routers
    app.include_router(api_router, prefix="/api/v1")

    return app
