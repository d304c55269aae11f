"""Structured JSON logging for the interior studio backend.

Call ``configure_logging()`` once at application startup.  After that every
``logging.getLogger(__name__)`` call produces single-line JSON on stdout.

Three context variables are attached to each record when set:

* ``request_id`` - bound per HTTP request by ``RequestIdMiddleware``.
* ``owner_id``   - the ``X-User-Id`` of the request, when present.
* ``job_id``     - bound by ``bind_job_id()`` while a generation job is being
  submitted, polled and persisted, so one grep follows a job end to end.
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_job_id_var: ContextVar[str] = ContextVar("job_id", default="")
_owner_id_var: ContextVar[str] = ContextVar("owner_id", default="")


def get_request_id() -> str:
    """Return the request ID for the current async context (empty string if none)."""
    return _request_id_var.get()


def get_job_id() -> str:
    return _job_id_var.get()


@contextmanager
def bind_job_id(job_id: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``job_id``."""
    token = _job_id_var.set(job_id)
    try:
        yield
    finally:
        _job_id_var.reset(token)


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects.

    Extra key-value pairs passed as ``extra=`` are copied to the top level.
    """

    # Attributes every LogRecord carries; anything else arrived via extra=
    _SKIP_ATTRS = frozenset(
        vars(logging.LogRecord("", 0, "", 0, "", None, None))
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        payload: dict = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        rid = get_request_id()
        if rid:
            payload["request_id"] = rid
        jid = get_job_id()
        if jid:
            payload["job_id"] = jid
        owner = _owner_id_var.get()
        if owner:
            payload["owner_id"] = owner

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._SKIP_ATTRS and not key.startswith("_"):
                payload[key] = value

        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    """Replace the root logger's handlers with a single JSON-to-stdout handler.

    Args:
        level: Logging level string - e.g. ``"INFO"``, ``"DEBUG"``.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # Every probe and poll is an httpx request; keep those out of INFO.
    for noisy in ("httpx", "httpcore", "openai", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Structured JSON logging initialised",
        extra={"log_level": level.upper()},
    )


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Inject a unique ``X-Request-ID`` into every request and response.

    An incoming ``X-Request-ID`` header is honoured so upstream proxies can
    propagate a trace ID; otherwise a fresh UUIDv4 hex is generated.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex

        token = _request_id_var.set(request_id)
        owner_token = _owner_id_var.set(request.headers.get("X-User-Id", ""))
        start = time.monotonic()

        try:
            response = await call_next(request)
        finally:
            duration_ms = round((time.monotonic() - start) * 1000, 1)
            _request_id_var.reset(token)
            _owner_id_var.reset(owner_token)

        response.headers[self._header_name] = request_id

        logging.getLogger("app.access").info(
            "%s %s %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        return response
