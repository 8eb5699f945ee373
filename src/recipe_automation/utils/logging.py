"""Structured event logging, redaction, and request correlation."""

from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from time import perf_counter
from typing import Any, Awaitable, Callable
from uuid import uuid4

from fastapi import FastAPI, Request
from starlette.responses import Response

from recipe_automation.config import Settings

REQUEST_ID_HEADER = "X-Request-ID"
REDACTED = "[REDACTED]"

SENSITIVE_FIELD_MARKERS = (
    "password",
    "secret",
    "token",
    "credential",
    "authorization",
    "api_key",
    "apikey",
)

QUIET_PATHS = frozenset({"/health"})

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RESERVED_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


def current_request_id() -> str | None:
    return _request_id.get()


def _event_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_RECORD_ATTRIBUTES and value is not None
    }


def _is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return any(marker in key_lower for marker in SENSITIVE_FIELD_MARKERS)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if _is_sensitive_key(str(key)) else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


class EventContextFilter(logging.Filter):
    """Stamp the active request id and redact sensitive event fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = _request_id.get()
        if request_id is not None and getattr(record, "request_id", None) is None:
            record.request_id = request_id

        for key, value in _event_fields(record).items():
            if _is_sensitive_key(key):
                setattr(record, key, REDACTED)
            elif isinstance(value, dict | list):
                setattr(record, key, _redact(value))

        return True


class JsonLogFormatter(logging.Formatter):
    """One JSON object per event, event fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            **_event_fields(record),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class KeyValueFormatter(logging.Formatter):
    """Human-readable lines with event fields appended as ``key=value``."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _event_fields(record)
        if not fields:
            return line

        rendered = " ".join(
            f"{key}={json.dumps(value, default=str)}"
            for key, value in sorted(fields.items())
        )
        head, newline, tail = line.partition("\n")
        return f"{head} | {rendered}{newline}{tail}"


def setup_logging(settings: Settings) -> None:
    """Configure application logging from runtime settings."""

    if settings.LOG_FILE is None:
        handler: logging.Handler = logging.StreamHandler()
    else:
        settings.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=settings.LOG_FILE,
            maxBytes=settings.LOG_FILE_MAX_BYTES,
            backupCount=settings.LOG_FILE_BACKUP_COUNT,
            encoding="utf-8",
        )

    handler.setFormatter(
        JsonLogFormatter() if settings.LOG_FORMAT == "json" else KeyValueFormatter()
    )
    handler.addFilter(EventContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL, logging.INFO))
    root_logger.addHandler(handler)

    # APScheduler logs every job submission at INFO; our listener already does.
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.captureWarnings(True)


def add_request_logging_middleware(app: FastAPI) -> None:
    """Log each request once and echo its correlation id."""

    logger = logging.getLogger("recipe_automation.request")

    @app.middleware("http")
    async def log_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        token = _request_id.set(request_id)
        started_at = perf_counter()
        fields: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else "unknown",
        }

        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    "request_failed",
                    extra={
                        **fields,
                        "status_code": 500,
                        "duration_ms": round((perf_counter() - started_at) * 1000, 2),
                    },
                )
                raise

            level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
            logger.log(
                level,
                "request_completed",
                extra={
                    **fields,
                    "status_code": response.status_code,
                    "duration_ms": round((perf_counter() - started_at) * 1000, 2),
                },
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            _request_id.reset(token)
