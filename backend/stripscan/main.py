"""
StripScan Backend — FastAPI Application Factory
===================================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes app configuration, middleware registration, route mounting,
       and lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn stripscan.main:app).
When:  Once at server startup; the returned app handles all subsequent requests.

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Middleware Chain:                                  │
    │  ┌──────────────┐ ┌──────────┐ ┌─────────────────┐  │
    │  │  Rate Limit  │→│ Req ID   │→│  Logging        │  │
    │  └──────────────┘ └──────────┘ └─────────────────┘  │
    │                                                     │
    │  Routes:                                            │
    │  ┌──────────────┐ ┌──────────┐ ┌─────────────────┐  │
    │  │ POST upload  │ │ GET list │ │ GET /health     │  │
    │  └──────────────┘ └──────────┘ └─────────────────┘  │
    │                                                     │
    │  Exception Handling:                                │
    │  ┌──────────────────────────────────────────────┐   │
    │  │ error.kind → status (STATUS_BY_KIND table)   │   │
    │  └──────────────────────────────────────────────┘   │
    └─────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → storage directories → tables
    Shutdown: dispose database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from stripscan import __version__
from stripscan.config import settings
from stripscan.database import dispose_engine, init_models
from stripscan.exceptions import (
    DuplicateQrCodeError,
    ErrorKind,
    RateLimitExceededError,
    StripScanError,
)
from stripscan.middleware.logging import RequestLoggingMiddleware
from stripscan.middleware.rate_limit import RateLimitMiddleware
from stripscan.middleware.request_id import RequestIDMiddleware, request_id_var
from stripscan.routes import health, test_strips, uploads

logger = logging.getLogger(__name__)

# ── Error kind → HTTP status ──────────────────────────────────────────────
STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.IMAGE_INVALID: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DUPLICATE_QR_CODE: 409,
    ErrorKind.RATE_LIMIT_EXCEEDED: 429,
    ErrorKind.FILE_STORAGE: 500,
    ErrorKind.PERSISTENCE_FAILED: 500,
    ErrorKind.PROCESSING_FAILED: 500,
}

# Server-side failures get a generic message; details stay in the logs
_GENERIC_SERVER_MESSAGE = "Failed to process upload"


# ══════════════════════════════════════════════════════════════════════════
# Structured Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Called once during app startup, before any other initialization.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),  # Docker captures stdout
        ],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:  logging, upload directories, database tables.
    Shutdown: close pooled database connections.
    """
    setup_logging()
    logger.info("=" * 60)
    logger.info("StripScan Backend starting up...")

    storage = Path(settings.upload_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Upload directory: %s", storage.resolve())

    await init_models()
    logger.info("Database tables ready")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("StripScan Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for consistent error responses.

    One handler covers every StripScanError: the status code comes from the
    error's kind, never from its message text.

    Security: Handlers NEVER expose stack traces, file paths or SQL in the
    response. 5xx responses carry a generic message; details are logged.
    """

    @app.exception_handler(StripScanError)
    async def handle_app_error(request: Request, exc: StripScanError):
        rid = request_id_var.get("")
        status = STATUS_BY_KIND.get(exc.kind, 500)
        headers: Dict[str, str] = {}
        details = None

        if status >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, exc.kind.value, exc.message, exc.context)
            message = _GENERIC_SERVER_MESSAGE
        else:
            logger.warning("[%s] %s: %s", rid, exc.kind.value, exc.message)
            message = exc.message

        if isinstance(exc, DuplicateQrCodeError):
            details = {"existing_id": str(exc.existing_id), "qr_code": exc.qr_code}
        elif isinstance(exc, RateLimitExceededError):
            details = {"retry_after": exc.retry_after}
            headers["Retry-After"] = str(exc.retry_after)
        elif status < 500 and exc.context:
            details = exc.context

        return JSONResponse(
            status_code=status,
            content={
                "error": exc.kind.value,
                "message": message,
                "details": details,
                "request_id": rid,
            },
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: generic 500 with the request ID for support."""
        rid = request_id_var.get("")
        logger.error(
            "[%s] Unexpected error: %s",
            rid,
            str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="StripScan API",
        description=(
            "Test strip photo processing: reads the strip's QR code, checks its "
            "format and expiration, rejects duplicates and keeps an upload history."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Middleware executes in REVERSE order of addition:
    # RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-Total-Count",
            "Retry-After",
        ],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(test_strips.router)
    app.include_router(uploads.router)
    app.include_router(health.router)

    return app


# uvicorn expects `stripscan.main:app` to be importable
app = create_app()
