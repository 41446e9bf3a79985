"""channelsync status API application module.

This module initializes the FastAPI application, its routers and the
startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from channelsync.api import channels_router, health_router
from channelsync.discovery import default_adapter_registry
from channelsync.domain import (
    ChannelAccountNotFoundError,
    ConfigurationError,
    DomainError,
    IntegrityError,
)
from channelsync.infrastructure.config import settings
from channelsync.infrastructure.logging import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    # Startup
    configure_logging()
    logger.info(
        "Starting channelsync API",
        version=settings.api_version,
        debug=settings.debug,
        channel_types=default_adapter_registry().channel_types(),
    )

    yield

    # Shutdown
    logger.info("Shutting down channelsync API")


app = FastAPI(
    title="channelsync API",
    description="Marketplace taxonomy and link status",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(health_router, tags=["Health"])
app.include_router(channels_router)


# ============================================================================
# Custom Exception Handlers
# ============================================================================


_DOMAIN_ERROR_STATUS: dict[type[DomainError], tuple[int, str]] = {
    ChannelAccountNotFoundError: (404, "ACCOUNT_NOT_FOUND"),
    ConfigurationError: (400, "INVALID_REQUEST"),
    IntegrityError: (409, "INTEGRITY_ERROR"),
}


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Map domain errors that escape a route to a status code."""
    status_code, error_code = next(
        (v for cls, v in _DOMAIN_ERROR_STATUS.items() if isinstance(exc, cls)),
        (422, "DOMAIN_ERROR"),
    )
    logger.warning("Domain error", path=request.url.path, error_code=error_code, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"error_code": error_code, "message": exc.message, "details": [exc.details] if exc.details else []},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "ERROR")
        message = detail.get("message", str(detail))
        details = detail.get("details", [])
    else:
        error_code = "ERROR"
        message = str(detail)
        details = []

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": details,
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with consistent format."""
    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )

    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "An internal error occurred",
            "details": [],
        },
    )
