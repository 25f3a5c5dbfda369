"""JSON log lines for the token engines, correlated by request id inside Flask."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import IO, Any
from uuid import uuid4

from flask import Flask, g, has_request_context, request

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_HEADERS = (REQUEST_ID_HEADER, "X-Correlation-ID")

# ``extra=`` attributes the record store attaches to its records
EXTRA_KEYS = ("operation", "attempts", "timeout")

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# marks handlers installed by configure_logging so a second call replaces them
_HANDLER_FLAG = "_tokenvault_handler"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).isoformat(timespec="milliseconds")


class JSONFormatter(logging.Formatter):
    """
    Render each log record as a single JSON object.

    :param extra_keys: Record attributes copied into the object when present.
    """

    def __init__(self, extra_keys: Iterable[str] = EXTRA_KEYS) -> None:
        super().__init__()
        self.extra_keys = tuple(extra_keys)

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": _iso(record.created),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(
            {key: getattr(record, key) for key in self.extra_keys if hasattr(record, key)}
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class RequestIdFilter(logging.Filter):
    """Stamp ``request_id`` on every record (``None`` outside a Flask request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = ensure_request_id() if has_request_context() else None
        return True


def _incoming_request_id() -> str | None:
    for header in CORRELATION_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return None


def ensure_request_id() -> str:
    """
    Return the id of the current request.

    The id is taken from the first correlation header the client sent,
    otherwise generated, and cached on ``flask.g`` for the rest of the
    request. Outside a request a fresh id is returned on every call.
    """
    if not has_request_context():
        return str(uuid4())
    request_id = g.get("request_id")
    if request_id is None:
        request_id = _incoming_request_id() or str(uuid4())
        g.request_id = request_id
    return request_id


def configure_logging(
    level: str | int = "INFO", *, json_lines: bool = True, stream: IO[str] | None = None
) -> logging.Handler:
    """
    Install one stdout handler on the root logger and set its level.

    Calling it again replaces the handler installed by the previous call;
    handlers added by anyone else (test runners, the host) are left alone.

    :param level: Level name or number; unknown names fall back to ``INFO``.
    :param json_lines: ``False`` switches to a plain text format (local CLI use).
    :param stream: Destination, ``sys.stdout`` by default.
    :returns: The installed handler.
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter() if json_lines else logging.Formatter(TEXT_FORMAT))
    handler.addFilter(RequestIdFilter())
    setattr(handler, _HANDLER_FLAG, True)

    root = logging.getLogger()
    for old in [h for h in root.handlers if getattr(h, _HANDLER_FLAG, False)]:
        root.removeHandler(old)
    root.addHandler(handler)

    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        level = resolved if isinstance(resolved, int) else logging.INFO
    root.setLevel(level)
    return handler


def init_app(app: Flask) -> None:
    """Seed a request id per request and echo it in the ``X-Request-ID`` response header."""
    app.logger.addFilter(RequestIdFilter())

    @app.before_request
    def _seed_request_id() -> None:
        ensure_request_id()

    @app.after_request
    def _echo_request_id(response):
        response.headers.setdefault(REQUEST_ID_HEADER, ensure_request_id())
        return response


__all__ = [
    "JSONFormatter",
    "RequestIdFilter",
    "configure_logging",
    "ensure_request_id",
    "init_app",
]
