"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that sets up
logging, CORS middleware, error translation, the API routers for project
treatments and the logger, and a health check endpoint for monitoring.

Example:
    The application can be run with uvicorn:
        $ uvicorn restoration.main:app --reload

    Or imported and used programmatically:
        >>> from restoration.main import app
        >>> # Use app in ASGI server
"""

import contextlib
import logging
from collections.abc import AsyncIterator

import fastapi
from fastapi import encoders, responses
from fastapi.middleware import cors

from restoration.api import logger as logger_api
from restoration.api import treatments
from restoration.core import config, errors
from restoration.core import logger as app_logger
from restoration.db import database
from restoration.services import shapefile

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncIterator[None]:
    """Close the database pool, if one was created, on shutdown."""
    yield
    database.close_db_pool()


def _error_response(
    status_code: int,
    message: str,
    details: list[object],
) -> responses.JSONResponse:
    return responses.JSONResponse(
        status_code=status_code,
        content={"detail": message, "errors": encoders.jsonable_encoder(details)},
    )


def register_exception_handlers(app: fastapi.FastAPI) -> None:
    """Translate application errors into JSON responses.

    Client errors carry their details; server errors are logged with their
    cause and only their message is returned.
    """

    @app.exception_handler(errors.RestorationError)
    async def restoration_error_handler(
        request: fastapi.Request,
        exc: errors.RestorationError,
    ) -> responses.JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed: %s",
                request.method,
                request.url.path,
                exc.message,
                exc_info=exc,
            )
            return _error_response(exc.status_code, exc.message, [])
        return _error_response(exc.status_code, exc.message, exc.errors)

    @app.exception_handler(shapefile.CommandError)
    async def command_error_handler(
        request: fastapi.Request,
        exc: shapefile.CommandError,
    ) -> responses.JSONResponse:
        return _error_response(400, "Failed to read shapefile", [str(exc)])


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures the ``restoration`` logger from settings, includes the API
    routers, installs error handlers and CORS middleware, and adds a health
    check endpoint.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    app_logger.configure_logging(settings.log_level)
    app = fastapi.FastAPI(
        title="Restoration Tracker API",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(treatments.router)
    app.include_router(logger_api.router)
    register_exception_handlers(app)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers."""
        return {"status": "ok"}

    return app


app = create_app()
