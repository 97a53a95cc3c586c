"""
main.py — TaxThink FastAPI application entry point.

Start with: uvicorn taxthink.main:app --reload --port 8000
"""
import asyncio
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mistralai import Mistral
from starlette.exceptions import HTTPException as StarletteHTTPException

from taxthink.config import settings
from taxthink.errors import GenerationFailure, StoreUnavailable
from taxthink.store import MemoryStore, RecordStore

# ---------------------------------------------------------------------------
# Logging — configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Store construction
# ---------------------------------------------------------------------------
def _run_migrations() -> None:
    """Apply Alembic migrations (auto-applied — no manual step needed)."""
    package_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "-c", os.path.join(package_dir, "alembic.ini"), "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=package_dir,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    msg = result.stdout.strip() or "No pending migrations"
    logger.info("Alembic: %s", msg)


def build_store() -> RecordStore:
    """Build the record store selected by settings.storage_backend."""
    if settings.storage_backend == "database":
        from taxthink.database import create_engine
        from taxthink.sql_store import SqlStore

        _run_migrations()
        logger.info("Using SQL record store")
        return SqlStore(create_engine(settings.database_url))
    logger.info("Using in-memory record store — data is lost on restart")
    return MemoryStore()


# ---------------------------------------------------------------------------
# Lifespan — startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Record store (runs Alembic first for the database backend)
      2. Mistral client — singleton for HTTP connection pool reuse
      3. Generation semaphore — MUST be created inside async context
    Shutdown:
      1. Close the record store
    """
    app.state.store = build_store()

    if not settings.mistral_api_key:
        logger.warning("MISTRAL_API_KEY is not set — message generation will fail")
    app.state.mistral = Mistral(api_key=settings.mistral_api_key)
    logger.info("Mistral client initialized model=%s", settings.mistral_model)

    app.state.generation_semaphore = asyncio.Semaphore(settings.generation_concurrency)
    logger.info("Generation semaphore initialized (concurrency=%d)", settings.generation_concurrency)

    logger.info("TaxThink v%s starting up", settings.app_version)
    yield

    # --- Shutdown ---
    await app.state.store.close()
    logger.info("TaxThink shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="TaxThink AI API",
    version=settings.app_version,
    description=(
        "Conversational tax thinking companion for US and Indian tax contexts. "
        "Persists sessions, messages and structured session data."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware — restricted to frontend origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers — registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Converts Pydantic / FastAPI validation errors to a 400 in the standard format.
    Returns ALL field violations in one response.
    """
    details = []
    for error in exc.errors():
        # Build dot-notation field path, excluding the top-level 'body' loc
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=400,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """
    Converts FastAPI HTTPException to standard error format with semantic code.
    """
    code_map = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(ValueError)
async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    """
    Catches explicit ValueError raises from business logic (store.py, sql_store.py).
    Surfaces as 400 VALIDATION_ERROR so the caller understands it's a data issue.
    """
    return _make_error_response(
        code="VALIDATION_ERROR",
        message=str(exc),
        status_code=400,
    )


@app.exception_handler(GenerationFailure)
async def generation_failure_handler(
    request: Request, exc: GenerationFailure
) -> JSONResponse:
    """Mistral errored, timed out, or returned unusable output. Detail stays server-side."""
    logger.error(
        "Generation failed on %s %s: %s",
        request.method,
        request.url.path,
        exc,
    )
    return _make_error_response(
        code="GENERATION_FAILED",
        message="Failed to process message",
        status_code=500,
    )


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(
    request: Request, exc: StoreUnavailable
) -> JSONResponse:
    """The record store failed twice in a row (see routes.deps.with_store_retry)."""
    logger.error(
        "Record store unavailable on %s %s: %s",
        request.method,
        request.url.path,
        exc,
    )
    return _make_error_response(
        code="STORE_UNAVAILABLE",
        message="Storage is temporarily unavailable",
        status_code=500,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  → includes exception type & message in details (dev only).
    DEBUG=false → generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check() -> dict:
    """Returns service health status."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "storage_backend": settings.storage_backend,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from taxthink.routes.sessions import router as sessions_router
from taxthink.routes.session_data import router as session_data_router

app.include_router(sessions_router)
app.include_router(session_data_router)
