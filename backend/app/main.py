"""
NoteMind Backend — FastAPI Application Factory
================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers and routers;
       uvicorn serves `app.main:app`.

Middleware (outermost first):
    RateLimit (AI generation only) → RequestID → Logging → GZip → CORS

Error responses:
    AI generation and edit endpoints return structured results and do not
    raise. Everything else raises NoteMindError subclasses, rendered here as
    {error: <ErrorKind>, message: <fixed user message>, details, request_id}
    with the status code the exception class declares.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.config import settings
from app.database import dispose_engine
from app.exceptions import NoteMindError, ValidationError
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.request_id import RequestIDMiddleware, request_id_var
from app.routes import admin, ai, health
from app.services.backup_service import backup_manager
from app.services.error_classifier import USER_MESSAGES

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """Configure root logging once at startup: one format, stdout, settings.log_level."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party libraries that log every operation
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("google").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("NoteMind Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: health checks and manual edits work without Gemini
        logger.error("Configuration error: %s", e)

    logger.info(
        "AI policy: %d attempts, base delay %dms, jitter up to %dms, token limit %d",
        settings.ai_max_retries,
        settings.ai_retry_base_delay_ms,
        settings.ai_retry_max_jitter_ms,
        settings.ai_token_limit,
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)

    yield

    logger.info("NoteMind Backend shutting down...")
    backup_manager.clear_expired_backups()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    NoteMindError → its status_code, fixed user message for its kind.
    Exception     → 500, generic message; stack trace logged server-side only.
    """

    @app.exception_handler(NoteMindError)
    async def handle_notemind_error(request: Request, exc: NoteMindError):
        rid = request_id_var.get("")
        if exc.status_code >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, exc.kind, exc.message, exc.context)
        else:
            logger.warning("[%s] %s: %s", rid, exc.kind, exc.message)

        content = {
            "error": exc.kind.value,
            # Validation messages are written for the user; everything else gets the fixed text
            "message": exc.message if isinstance(exc, ValidationError) else USER_MESSAGES[exc.kind],
            "request_id": rid,
        }
        # Internal context is only echoed for client-correctable errors
        if exc.status_code < 500 and exc.context:
            content["details"] = exc.context
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "UNKNOWN_ERROR",
                "message": USER_MESSAGES[NoteMindError.kind],
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="NoteMind API",
        description=(
            "AI summaries and tags for notes, with retries, error classification, "
            "partial-success reporting and backup/rollback of AI results."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Added innermost first; the last one added runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(ai.router)
    app.include_router(admin.router)
    app.include_router(health.router)

    return app


app = create_app()
