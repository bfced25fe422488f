# Structured JSON logging for the engine.
# Every module logs through logging.getLogger(__name__) with event names such as
# "commission.created" and context in `extra`; configure_logging() attaches the
# JSON formatter once to the package logger so those records come out as one
# JSON object per line. APILoggingMiddleware adds one record per HTTP request.

from __future__ import annotations

import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from time import monotonic
from typing import Any
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from affiliate_engine.core.config import settings


PACKAGE_LOGGER = "affiliate_engine"
REQUEST_ID_HEADER = "X-Request-ID"

# Attributes every LogRecord carries; anything else on a record came from `extra`.
_RECORD_ATTRS = set(logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
}

# Request fields are emitted even when empty so log queries can rely on them.
_REQUEST_FIELDS = {"request_id", "shop_id", "route", "method", "status_code", "duration_ms", "error_code"}


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            if value is None and key not in _REQUEST_FIELDS:
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=_json_default)


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach the JSON handler to the package logger. Safe to call more than once."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    if not any(isinstance(handler.formatter, JsonLogFormatter) for handler in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(JsonLogFormatter())
        package_logger.addHandler(handler)
    package_logger.propagate = False
    return package_logger


logger = logging.getLogger(f"{PACKAGE_LOGGER}.api")


def _resolve_route(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class APILoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        context = {
            "request_id": request_id,
            "shop_id": request.headers.get(settings.SHOP_HEADER_NAME),
            "method": request.method,
            "path": request.url.path,
        }
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request.failed",
                extra={
                    **context,
                    "route": _resolve_route(request),
                    "status_code": 500,
                    "duration_ms": round((monotonic() - start) * 1000.0, 2),
                    "error_code": "unhandled_exception",
                },
            )
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "request.completed",
            extra={
                **context,
                "route": _resolve_route(request),
                "status_code": response.status_code,
                "duration_ms": round((monotonic() - start) * 1000.0, 2),
                "error_code": response.headers.get("X-Error-Code"),
            },
        )
        return response
