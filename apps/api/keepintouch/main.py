"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from keepintouch.core.config import settings
from keepintouch.core.structured_logging import build_log_context, configure_logging
from keepintouch.db.session import engine
from keepintouch.services.kit_errors import (
    EmptySequenceError,
    InvalidIntervalError,
    InvalidStateTransitionError,
    KitServiceError,
    MissingAssigneeError,
    PresetNotFoundError,
    SubscriptionNotFoundError,
    TouchNotFoundError,
)

configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Keep-in-Touch API",
    description="Touch-sequence scheduling and cycle lifecycle for leads, customers and professionals",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Actor"],
)

# ============================================================================
# Error mapping
# ============================================================================

KIT_ERROR_STATUS: dict[type[KitServiceError], int] = {
    PresetNotFoundError: 404,
    SubscriptionNotFoundError: 404,
    TouchNotFoundError: 404,
    InvalidStateTransitionError: 409,
    EmptySequenceError: 422,
    InvalidIntervalError: 422,
    MissingAssigneeError: 422,
}


async def kit_error_handler(request: Request, exc: KitServiceError) -> JSONResponse:
    status_code = KIT_ERROR_STATUS.get(type(exc), 400)
    if status_code >= 409:
        logger.info(
            "Keep-in-touch request rejected error=%s detail=%s",
            type(exc).__name__,
            exc,
            extra=build_log_context(route=request.url.path, method=request.method),
        )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


app.add_exception_handler(KitServiceError, kit_error_handler)

# ============================================================================
# Routers
# ============================================================================

from keepintouch.routers import kit_router

app.include_router(kit_router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
