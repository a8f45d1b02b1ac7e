"""
Logging setup for the API.

Production emits one JSON object per line, development a readable text line.
Every record written while a request is in flight carries that request's id
and the signed-in user's id, and each request ends with one access line.
"""

from __future__ import annotations

import json
import logging
import time
import uuid

from flask import Flask, g, has_request_context, request

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [req=%(request_id)s user=%(user_id)s] %(message)s"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("werkzeug", "httpx", "openai", "pypdf")


def _current_user_id() -> str:
    # Only a user flask-login has already loaded; never trigger a lookup from a log call
    if not has_request_context():
        return "-"
    return getattr(g.get("_login_user"), "id", None) or "-"


class RequestContextFilter(logging.Filter):
    """Stamp each record with request_id and user_id ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = g.get("request_id", "-") if has_request_context() else "-"
        if not hasattr(record, "user_id"):
            record.user_id = _current_user_id()
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in ("request_id", "user_id"):
            value = getattr(record, key, "-")
            if value != "-":
                entry[key] = value
        if record.exc_info and record.exc_info[0]:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _build_handler(log_format: str) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.addFilter(RequestContextFilter())
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%H:%M:%S"))
    return handler


def _register_request_hooks(app: Flask) -> None:
    access_log = logging.getLogger("access")

    @app.before_request
    def _start_request():
        # Honour an id set by a proxy so traces line up across hops
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        g.request_start = time.perf_counter()

    @app.after_request
    def _finish_request(response):
        elapsed_ms = (time.perf_counter() - g.get("request_start", time.perf_counter())) * 1000
        response.headers["X-Request-ID"] = g.get("request_id", "-")
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        access_log.log(level, "%s %s -> %s (%.0f ms)", request.method, request.full_path.rstrip("?"),
                       response.status_code, elapsed_ms)
        return response


def init_logging(app: Flask) -> None:
    """Install the root handler for this process and the per-request hooks."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(_build_handler(app.config.get("LOG_FORMAT", "text")))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _register_request_hooks(app)
