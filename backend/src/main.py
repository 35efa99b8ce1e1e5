"""
FastAPI application entry point for the CostPilot notification backend.

This module initializes the FastAPI application with:
- Session cookie middleware (identity set by the external auth provider)
- CORS middleware for frontend development
- Exception handlers for consistent error responses
- Shutdown handling for user sessions and outbound HTTP clients
- Logging configuration

Environment Variables:
    COSTPILOT_DB_URL: Database URL
    COSTPILOT_ENV: Environment (production/development, default: development)
    COSTPILOT_LOG_LEVEL: Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL, default: INFO)
    SESSION_SECRET_KEY: Session cookie signing key shared with the auth provider
"""

from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from backend.src.config.session import get_session_settings
from backend.src.config.settings import get_settings
from backend.src.db.database import dispose_engine
from backend.src.db.change_stream import get_change_stream
from backend.src.services.notification_service import get_email_dispatcher, get_push_provider
from backend.src.services.session_service import get_session_manager
from backend.src.utils.logging_config import get_logger, init_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Handles startup and shutdown events:
    - Startup: install change stream hooks, report channel configuration
    - Shutdown: end user sessions, close outbound HTTP clients

    Args:
        app: FastAPI application instance

    Yields:
        Control to the application
    """
    logger = get_logger("api")
    logger.info("Starting CostPilot notification backend")

    settings = get_settings()
    get_change_stream()
    app.state.session_manager = get_session_manager()

    if not settings.email_configured:
        logger.warning("EMAIL_RELAY_URL not set, email delivery is simulated")
    if not settings.push_configured:
        logger.warning("Push provider credentials not set, push delivery is simulated")

    yield

    logger.info("Shutting down CostPilot notification backend")
    await app.state.session_manager.sign_out_all()
    await get_email_dispatcher().close()
    await get_push_provider().close()
    dispose_engine()


# Initialize logging before creating app
init_logging()

app = FastAPI(
    title="CostPilot Notification API",
    description="Notification, push subscription and live sync backend "
                "for the CostPilot project and cost dashboard.",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


app.add_middleware(SessionMiddleware, **get_session_settings().middleware_options())

# Configure CORS middleware for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers


def _error_response(status_code: int, error: str, message: str, **fields) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, **fields},
    )


def _request_fields(request: Request) -> Dict[str, Any]:
    return {"path": request.url.path, "method": request.method}


@app.exception_handler(ValidationError)
async def validation_exception_handler(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """Pydantic errors raised by service code, after request parsing."""
    get_logger("api").warning(
        "Validation error",
        extra={**_request_fields(request), "errors": exc.errors()},
    )
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation Error",
        "Request validation failed",
        details=exc.errors(),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    get_logger("db").error(
        "Database error",
        extra={**_request_fields(request), "error": str(exc)},
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Database Error",
        "The notification store is unavailable. Please try again later.",
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    get_logger("api").error(
        f"Unhandled {type(exc).__name__}: {exc}",
        extra=_request_fields(request),
        exc_info=True,
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        "An unexpected error occurred. Please try again later.",
    )


@app.get("/health", tags=["Health"])
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint.

    Returns:
        Health status and delivery channel configuration
    """
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "costpilot-notifications",
        "version": "1.0.0",
        "email_configured": settings.email_configured,
        "push_configured": settings.push_configured,
    }


# Root endpoint


@app.get("/", tags=["Root"])
async def root() -> Dict[str, str]:
    """
    Root endpoint with API information.

    Returns:
        API metadata and documentation links
    """
    return {
        "message": "CostPilot Notification API",
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc",
        "openapi": "/openapi.json",
    }


# API routers
from backend.src.api import notifications

app.include_router(notifications.router, prefix="/api")
