"""Take Settlement: Main FastAPI Application.

Records takes from the web widget and the SMS conversation, opens and
closes packs on schedule, and settles takes when props are graded.
"""

import logging
import os
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import close_db, get_settings, init_db
from .schemas import ErrorResponse
from .services.errors import (
    ConcurrencyError,
    FormulaInputError,
    FormulaNotConfiguredError,
    InvalidIdentityError,
    InvalidSideError,
    PackNotFoundError,
    PropNotFoundError,
    PropNotOpenError,
    SettlementError,
)

logger = logging.getLogger(__name__)
settings = get_settings()

# Service error -> (HTTP status, error code)
SETTLEMENT_ERRORS: dict[type[SettlementError], tuple[int, str]] = {
    PropNotFoundError: (status.HTTP_404_NOT_FOUND, "prop_not_found"),
    PackNotFoundError: (status.HTTP_404_NOT_FOUND, "pack_not_found"),
    PropNotOpenError: (status.HTTP_409_CONFLICT, "prop_not_open"),
    ConcurrencyError: (status.HTTP_409_CONFLICT, "concurrency_conflict"),
    InvalidSideError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid_side"),
    InvalidIdentityError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid_identity"),
    FormulaNotConfiguredError: (status.HTTP_400_BAD_REQUEST, "formula_not_configured"),
    FormulaInputError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "formula_input_error"),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info(f"Starting {settings.app_name} ({settings.environment})")

    # Startup - skip init_db in production (tables come from migrations)
    if os.getenv("ENVIRONMENT", settings.environment) != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Take Settlement API

    Binary predictions ("takes") on props bundled into packs.

    ### Key Features

    - **Overwrite semantics**: A new take replaces the identity's previous take; only one is ever current.
    - **SMS conversations**: Packs can be answered prop by prop over SMS.
    - **Scheduled packs**: Packs open and close on their own schedule via the job trigger.
    - **Grading cascade**: Grading a prop settles every take and completes the pack exactly once.

    ### Authentication

    Admin grading endpoints require `Authorization: Bearer <token>` with an admin role.
    The job trigger requires the `X-Cron-Key` header.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)


@app.exception_handler(SettlementError)
async def settlement_exception_handler(request: Request, exc: SettlementError):
    """Map service errors to ErrorResponse bodies."""
    status_code, code = status.HTTP_400_BAD_REQUEST, "settlement_error"
    for error_type, mapping in SETTLEMENT_ERRORS.items():
        if isinstance(exc, error_type):
            status_code, code = mapping
            break

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=code, message=str(exc)).model_dump(),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    error_detail = str(exc)
    # In development/debug mode, include full traceback
    if settings.debug or settings.environment != "production":
        error_detail = f"{str(exc)}\n{traceback.format_exc()}"

    logger.error(f"Unhandled exception on {request.url.path}: {error_detail}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=f"An unexpected error occurred: {str(exc)[:200]}",
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "take_settlement.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
