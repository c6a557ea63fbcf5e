"""FastAPI application for Hookline."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import pydantic
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hookline import __version__
from hookline.config import Settings
from hookline.exceptions import (
    ConfigurationError,
    ConflictError,
    HooklineError,
    NotFoundError,
    ValidationError,
)
from hookline.logging import configure_logging, get_logger
from hookline.service import WebhookService

from .router import router, set_service

logger = get_logger(__name__)


def load_settings() -> Settings:
    """Load settings from the environment.

    Raises:
        ConfigurationError: If the environment holds invalid values.
    """
    try:
        return Settings()
    except pydantic.ValidationError as e:
        raise ConfigurationError(f"Invalid Hookline configuration: {e}") from e


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from hookline.api import create_app

        app = create_app()
        # Run with: uvicorn hookline.api:app --reload
        ```
    """
    if settings is None:
        settings = load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage application lifespan.

        Initializes storage, starts delivery workers and re-enqueues open
        deliveries on startup; stops them on shutdown.
        """
        configure_logging(level=settings.log_level, format=settings.log_format)
        logger.info(
            "Starting Hookline API",
            log_level=settings.log_level,
            log_format=settings.log_format,
            workers=settings.max_concurrent_deliveries,
        )

        service = WebhookService.create(settings)
        await service.initialize()
        set_service(service)

        yield

        await service.close()
        set_service(None)
        logger.info("Hookline API stopped")

    app = FastAPI(
        title="Hookline",
        description="Signed, retried webhook delivery for domain events.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Register exception handlers
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle validation errors with 400 status."""
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(ConflictError)
    async def conflict_error_handler(request: Request, exc: ConflictError) -> JSONResponse:
        """Handle state conflicts with 409 status."""
        logger.info("Conflict", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=409, content=exc.to_dict())

    @app.exception_handler(HooklineError)
    async def hookline_error_handler(request: Request, exc: HooklineError) -> JSONResponse:
        """Handle all other Hookline errors with 500 status."""
        logger.error("Hookline error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())

    app.include_router(router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
