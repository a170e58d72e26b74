"""
Code Journal Backend — FastAPI Application Factory
===================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn codejournal.main:app).

Application Architecture:
    ┌───────────────────────────────────────────────────────────┐
    │                       FastAPI App                         │
    │                                                           │
    │  Middleware Chain:                                        │
    │  ┌─────────┐ ┌─────────┐ ┌───────────────┐ ┌───────────┐  │
    │  │ Req ID  │→│ Logging │→│ Journal token │→│ GZip/CORS │  │
    │  └─────────┘ └─────────┘ └───────────────┘ └───────────┘  │
    │                                                           │
    │  Routes:                                                  │
    │  /api/auth  /api/users  /api/submissions  /api/files      │
    │  /api/maintenance  /federation  /health                   │
    │                                                           │
    │  Exception Handlers:                                      │
    │  JournalError → its status_code / error_code              │
    │  RequestValidationError → 400   Exception → 500           │
    └───────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (logged, not fatal)
    3. Create tables when running on SQLite (Alembic owns server schemas)
    4. Ensure this journal's own servers row and token
    5. Reconcile the two stores (RECONCILE_ON_STARTUP)

    Shutdown:
    1. Dispose database engine (close all connections)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from codejournal import __version__, database
from codejournal.config import settings
from codejournal.exceptions import JournalError, StoreError
from codejournal.middleware.logging import RequestLoggingMiddleware
from codejournal.middleware.request_id import RequestIDMiddleware, request_id_var
from codejournal.middleware.security_token import ForeignJournalTokenMiddleware
from codejournal.routes import (
    auth,
    comments,
    federation,
    health,
    maintenance,
    submissions,
    users,
)
from codejournal.services.reconciliation import reconciler
from codejournal.services.user_service import user_service

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Called once during startup, before any other initialization.
    """
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
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

async def startup_tasks() -> None:
    """Self token and startup reconciliation, in one session."""
    async with database.async_session_factory() as session:
        await user_service.ensure_self_server(session)
        if settings.reconcile_on_startup:
            report = await reconciler.run(session)
            await session.commit()
            if report.missing_on_disk:
                logger.warning(
                    "Submissions without an on-disk subtree: %s", report.missing_on_disk
                )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Code Journal Backend starting up (group %d)...", settings.group_number)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    if settings.is_sqlite:
        await database.create_schema()
        logger.info("SQLite schema ensured")

    await startup_tasks()

    logger.info("Storage root: %s", settings.storage_root)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Code Journal Backend shutting down...")
    await database.dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions onto `{"error", "message", "details", "request_id"}` bodies.

    Handler hierarchy:
        StoreError              → 500, generic message, context logged only
        JournalError (others)   → exc.status_code, exc.error_code, context
                                  returned as details
        RequestValidationError  → 400 validation_error
        Exception (fallback)    → 500 internal_server_error
    """

    @app.exception_handler(JournalError)
    async def handle_journal_error(request: Request, exc: JournalError):
        rid = request_id_var.get("")
        if isinstance(exc, StoreError):
            logger.error(
                "[%s] %s: %s | Context: %s",
                rid,
                type(exc).__name__,
                exc.message,
                exc.context,
            )
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": exc.error_code,
                    "message": "An internal error occurred. Please try again later.",
                    "details": {},
                    "request_id": rid,
                },
            )
        logger.warning("[%s] %s: %s", rid, exc.error_code, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error_code,
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        rid = request_id_var.get("")
        errors = [
            {"field": ".".join(str(part) for part in error.get("loc", ())), "message": error.get("msg")}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "error": "validation_error",
                "message": "Request body or parameters are invalid",
                "details": {"errors": errors},
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "details": {},
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Code Journal API",
        description=(
            "Peer-review journal for source code: submissions, files, line-anchored "
            "comment threads, reviews and editorial approval."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added executes first: RequestID → Logging → Token → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(ForeignJournalTokenMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(submissions.router)
    app.include_router(comments.router)
    app.include_router(maintenance.router)
    app.include_router(federation.router)
    app.include_router(health.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
app = create_app()
