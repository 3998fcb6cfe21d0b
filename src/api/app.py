"""FastAPI application entry point with global error handling."""
from __future__ import annotations

import os
import sys

# Add src/ to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.logging_config import (
    get_logger,
    reset_request_context,
    setup_logging,
    start_request_context,
)
from core.utils import generate_unique_key
from core.exceptions import (
    ConfigurationError,
    ConflictError,
    CoordinationError,
    DependencyFailureError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from api.routes import (
    health,
    conversations,
    messages,
    contracts,
    referrals,
    marketplace,
    notifications,
)

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

REQUEST_ID_HEADER = "X-Request-ID"

# Status code per error kind; anything else is a 500
STATUS_BY_ERROR = {
    InvalidInputError: 400,
    ForbiddenError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    DependencyFailureError: 503,
}


def _ensure_schema() -> None:
    """Create missing tables at startup; a store outage is logged, not fatal."""
    from core.db import init_db, validate_database

    db_status = validate_database()
    if db_status["status"] == "error":
        LOGGER.error(
            "Store unreachable at startup; requests will fail until it recovers",
            extra={"extra_data": {"errors": db_status["errors"]}},
        )
        return
    if db_status["status"] != "missing_tables":
        LOGGER.info(f"Schema present ({len(db_status['tables_found'])} tables)")
        return

    LOGGER.warning(
        "Creating missing tables",
        extra={"extra_data": {"missing": db_status["tables_missing"]}},
    )
    created = init_db()
    if created["status"] == "error":
        LOGGER.error(f"Could not create tables: {created.get('error')}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging and make sure the schema exists before serving."""
    setup_logging(level=SETTINGS.log_level, json_format=SETTINGS.log_format == "json")

    if SETTINGS.is_email_relay_enabled() and not SETTINGS.dry_run:
        LOGGER.warning("!!! LIVE MODE !!! DRY_RUN=false - notification emails will be sent")
    else:
        LOGGER.info("Email relay disabled or in DRY_RUN - no emails will be sent")

    LOGGER.info(
        "Coordination API starting",
        extra={"extra_data": {
            "environment": SETTINGS.environment,
            "enabled_services": SETTINGS.get_enabled_services(),
        }},
    )
    _ensure_schema()

    yield
    LOGGER.info("Coordination API stopped")


def _error_response(status_code: int, kind: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": kind, "message": message})


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance with:
        - CORS middleware
        - Global exception handlers for the error taxonomy
        - All API routes
    """
    application = FastAPI(
        title="GREIA Coordination API",
        description="Conversations, contracts, referrals and marketplace leads",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # -------------------------------------------------------------------------
    # CORS Middleware
    # -------------------------------------------------------------------------
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Request correlation
    # -------------------------------------------------------------------------

    @application.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Bind X-Request-ID (or a fresh id) to every log line of the request."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_unique_key()[:16]
        token = start_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            reset_request_context(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    # -------------------------------------------------------------------------
    # Global Exception Handlers
    # -------------------------------------------------------------------------

    @application.exception_handler(CoordinationError)
    async def coordination_error_handler(
        request: Request, exc: CoordinationError
    ) -> JSONResponse:
        """Map every taxonomy kind to its status code."""
        for error_type, status_code in STATUS_BY_ERROR.items():
            if isinstance(exc, error_type):
                break
        else:
            status_code = 500

        if status_code >= 500:
            LOGGER.error(f"{exc.kind}: {exc}", extra={"extra_data": {"path": request.url.path}})
        else:
            LOGGER.info(f"{exc.kind}: {exc}", extra={"extra_data": {"path": request.url.path}})

        if isinstance(exc, ConfigurationError):
            return _error_response(500, exc.kind, "Service misconfiguration")
        return _error_response(status_code, exc.kind, exc.message or str(exc))

    @application.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request bodies and parameters are invalid input."""
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid')}" if location else first.get("msg", "invalid")
        LOGGER.warning(f"Validation error: {message}", extra={"extra_data": {"path": request.url.path}})
        return _error_response(400, InvalidInputError.kind, message)

    # -------------------------------------------------------------------------
    # Include Routers
    # -------------------------------------------------------------------------
    application.include_router(health.router, prefix="/health", tags=["Health"])

    application.include_router(conversations.router, prefix="/api/conversations", tags=["Conversations"])
    application.include_router(messages.router, prefix="/api/messages", tags=["Messages"])
    application.include_router(contracts.router, prefix="/api/contracts", tags=["Contracts"])
    application.include_router(referrals.router, prefix="/api/referrals", tags=["Referrals"])
    application.include_router(marketplace.router, prefix="/api/marketplace", tags=["Marketplace"])
    application.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])

    return application


# Create the application instance
app = create_app()
