"""
Structured Logging
==================
Configures Python's logging for the API and the worker.

Usage:
    from bluhatch.core.logging import init_logging
    init_logging(app)

In JSON mode each log line contains:
  - timestamp (ISO-8601 UTC)
  - level
  - logger (module name)
  - message
  - request_id / method / path (inside an HTTP request)
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone

from fastapi import FastAPI, Request

from bluhatch.core.config import settings

_request_ctx: ContextVar[dict | None] = ContextVar("bluhatch_request", default=None)


def current_request_id() -> str | None:
    ctx = _request_ctx.get()
    return ctx["request_id"] if ctx else None


class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        ctx = _request_ctx.get()
        if ctx:
            payload.update(ctx)

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None, json_lines: bool | None = None) -> None:
    """Configure the root logger (shared by the API process and Celery workers)."""
    level = (level or settings.log_level).upper()
    if json_lines is None:
        json_lines = settings.log_json

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))

    # Remove existing handlers to avoid duplicate output
    for handler in root.handlers[:]:
        root.handlers.remove(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_lines:
        handler.setFormatter(_JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    root.addHandler(handler)


def init_logging(app: FastAPI, *, level: str | None = None) -> None:
    """Attach logging and the request-id middleware to the FastAPI app."""
    configure_logging(level)
    http_logger = logging.getLogger("bluhatch.http")

    @app.middleware("http")
    async def _request_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = _request_ctx.set(
            {"request_id": request_id, "method": request.method, "path": request.url.path}
        )
        started = time.perf_counter()
        http_logger.info("request_start %s %s", request.method, request.url.path)
        try:
            response = await call_next(request)
            elapsed_ms = (time.perf_counter() - started) * 1000
            http_logger.info(
                "request_end %s %s status=%d elapsed_ms=%.1f",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            _request_ctx.reset(token)

    logging.getLogger("bluhatch").info(
        "Structured logging initialised (level=%s, json=%s)",
        level or settings.log_level,
        settings.log_json,
    )
