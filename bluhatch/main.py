"""Bluhatch evidence service — FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from redis import Redis
from sqlalchemy import text

from bluhatch import __version__
from bluhatch.api.routes import evidence_router, jobs_router, reports_router, storage_router
from bluhatch.core.config import settings
from bluhatch.core.database import engine
from bluhatch.core.errors import BluhatchError, ErrorKind
from bluhatch.core.logging import init_logging
from bluhatch.services.storage import ensure_buckets, get_object_store

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
}


def _run_migrations() -> None:
    """Apply pending Alembic migrations on startup."""
    from alembic import command
    from alembic.config import Config as AlembicConfig

    cfg = AlembicConfig("alembic.ini")
    command.upgrade(cfg, "head")
    logger.info("Alembic migrations applied.")


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Startup / shutdown lifecycle hook."""
    loop = asyncio.get_running_loop()
    if settings.run_migrations_on_startup:
        # Timeout so a bad connection cannot hang startup
        try:
            await asyncio.wait_for(loop.run_in_executor(None, _run_migrations), timeout=15)
        except Exception as exc:
            logger.warning("DB migration skipped: %s", exc)
    try:
        await asyncio.wait_for(loop.run_in_executor(None, ensure_buckets), timeout=10)
    except Exception as exc:
        logger.warning("Bucket check failed (will retry on first use): %s", exc)
    yield


app = FastAPI(title="Bluhatch Evidence Service", version=__version__, lifespan=lifespan)

init_logging(app)

# ── CORS ─────────────────────────────────────────────────────────────


class _EmptyPreflightCORSMiddleware(CORSMiddleware):
    """Browser preflights get the CORS headers and an empty body."""

    def preflight_response(self, request_headers) -> Response:
        response = super().preflight_response(request_headers)
        headers = {
            key: value
            for key, value in response.headers.items()
            if key not in ("content-length", "content-type")
        }
        return Response(status_code=response.status_code, headers=headers)


app.add_middleware(
    _EmptyPreflightCORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error envelope ───────────────────────────────────────────────────
# Failures keep HTTP 500 for existing clients; "kind" tells them apart.


@app.exception_handler(BluhatchError)
async def _domain_error(request: Request, exc: BluhatchError):
    logger.info("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.kind.value)
    return JSONResponse(
        status_code=500,
        content={"error": exc.message, "kind": exc.kind.value},
        headers=_CORS_HEADERS,
    )


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body') or 'request'}: {err.get('msg')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=500,
        content={"error": f"Invalid request: {problems}", "kind": ErrorKind.validation_error.value},
        headers=_CORS_HEADERS,
    )


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
        headers=_CORS_HEADERS,
    )


# ── Routers ──────────────────────────────────────────────────────────
app.include_router(evidence_router, prefix=API_PREFIX)
app.include_router(jobs_router, prefix=API_PREFIX)
app.include_router(reports_router, prefix=API_PREFIX)
app.include_router(storage_router, prefix=API_PREFIX)


@app.options("/{rest_of_path:path}")
def preflight(rest_of_path: str):
    return Response(status_code=200, headers=_CORS_HEADERS)


@app.get("/health")
def health():
    """Health check with service status details."""
    result = {
        "status": "healthy",
        "version": __version__,
        "database": "disconnected",
        "redis": "disconnected",
        "object_store": "disconnected",
    }

    # Check database
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        result["database"] = "connected"
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        result["status"] = "degraded"

    # Check Redis
    try:
        r = Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        result["redis"] = "connected"
    except Exception as exc:
        logger.warning("Redis health check failed: %s", exc)
        result["status"] = "degraded"

    # Check object store
    try:
        for bucket in (settings.evidence_bucket, settings.reports_bucket):
            get_object_store(bucket).ping()
        result["object_store"] = "connected"
    except Exception as exc:
        logger.warning("Object store health check failed: %s", exc)
        result["status"] = "degraded"

    return result
