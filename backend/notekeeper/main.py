"""
NoteKeeper Backend — FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn notekeeper.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────┐
    │                   FastAPI App                        │
    │                                                      │
    │  Middleware Chain:                                   │
    │  ┌──────────┐ ┌──────────┐ ┌──────┐ ┌──────┐         │
    │  │ Req ID   │→│ Logging  │→│ GZip │→│ CORS │         │
    │  └──────────┘ └──────────┘ └──────┘ └──────┘         │
    │                                                      │
    │  Routes:                                             │
    │  /api/notes  /api/notes/{id}/attachments             │
    │  /api/notes/{id}/archives  /health                   │
    │                                                      │
    │  Exception Handlers:                                 │
    │  Validation→400 │ Limit→403 │ NotFound→404 │         │
    │  Conflict→409   │ Store→500                          │
    └──────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Configure logging, validate configuration (fail fast)
    2. Build the ServiceContainer unless one was attached beforehand
    3. Ensure the queue and status tables exist

    Shutdown:
    1. Dispose the database engine of a container built here
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from notekeeper import __version__
from notekeeper.config import Settings, settings as default_settings
from notekeeper.container import build_container
from notekeeper.exceptions import (
    ConflictError,
    LimitExceededError,
    NoteKeeperError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from notekeeper.logging_setup import setup_logging
from notekeeper.middleware.logging import RequestLoggingMiddleware
from notekeeper.middleware.request_id import RequestIDMiddleware, request_id_var
from notekeeper.routes import archives, attachments, health, notes

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup builds the store clients once; every request then finds them on
    `app.state.container`. A container attached before startup (tests) is
    used as is and not disposed here.
    """
    settings: Settings = app.state.settings

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(settings)
    logger.info("=" * 60)
    logger.info("NoteKeeper API starting up...")

    settings.validate_required_for_production()

    owned = getattr(app.state, "container", None) is None
    if owned:
        app.state.container = build_container(settings)
    await app.state.container.ensure_stores()

    logger.info("Storage root: %s", app.state.container.object_store.storage_root)
    logger.info("Archive queue: %s", settings.archive_queue_name)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield  # Application runs here

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("NoteKeeper API shutting down...")
    if owned:
        await app.state.container.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, exc: NoteKeeperError,
                    details: Optional[dict] = None) -> JSONResponse:
    content = {
        "error": error,
        "message": exc.message,
        "request_id": request_id_var.get(""),
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy onto HTTP responses.

        ValidationError       → 400
        LimitExceededError    → 403
        NotFoundError         → 404
        ConflictError         → 409
        TransientStoreError   → 500 (store message surfaced, context logged only)
        NoteKeeperError       → 500
        Exception             → 500 (generic message, stack trace logged only)
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("Validation error: %s", exc.message)
        return _error_response(400, "validation_error", exc, details=exc.context)

    @app.exception_handler(LimitExceededError)
    async def handle_limit_exceeded(request: Request, exc: LimitExceededError):
        logger.warning("Limit exceeded: %s", exc.message)
        return _error_response(403, "limit_exceeded", exc, details=exc.context)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc)

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError):
        logger.warning("Conflict: %s", exc.message)
        return _error_response(409, "conflict", exc)

    @app.exception_handler(TransientStoreError)
    async def handle_store_error(request: Request, exc: TransientStoreError):
        logger.error("Store error (%s): %s | Context: %s", exc.store, exc.message, exc.context)
        return _error_response(500, "store_error", exc)

    @app.exception_handler(NoteKeeperError)
    async def handle_app_error(request: Request, exc: NoteKeeperError):
        logger.error("Unhandled application error: %s | Context: %s", exc.message, exc.context)
        return _error_response(500, "internal_server_error", exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Stack trace is logged server-side only, never returned."""
        logger.error("Unexpected error: %s", str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred.",
                "request_id": request_id_var.get(""),
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns: Fully configured FastAPI instance. Store clients are attached at
    startup, or beforehand by assigning `app.state.container`.
    """
    settings = settings or default_settings

    app = FastAPI(
        title="NoteKeeper API",
        description=(
            "Notes with file attachments, and asynchronous jobs that package a "
            "note's attachments into one zip archive."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ── Register Middleware ───────────────────────────────────────────────
    # Middleware executes in REVERSE order of addition:
    # RequestID → Logging → GZip → CORS → route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Location"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(notes.router)
    app.include_router(attachments.router)
    app.include_router(archives.router)
    app.include_router(health.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
# uvicorn expects `notekeeper.main:app` to be importable
app = create_app()
