"""Structured logging: JSON formatter, session-token context and root setup.

Modules log through ``get_logger(__name__)`` and pass structured fields with
``extra={...}``; the host application calls ``setup_logging`` once.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Token of the respondent session being processed, attached to every record.
_SESSION_TOKEN: ContextVar[Optional[str]] = ContextVar("session_token", default=None)

_RESERVED = {
    "msg", "args", "levelname", "levelno", "name", "pathname", "filename", "module",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName", "created",
    "msecs", "relativeCreated", "thread", "threadName", "processName", "process",
    "taskName", "session_token",
}


def set_session_token(token: Optional[str]) -> None:
    """Bind ``token`` to log records emitted from the current context."""
    _SESSION_TOKEN.set(token)


def clear_session_token() -> None:
    _SESSION_TOKEN.set(None)


class SessionTokenFilter(logging.Filter):
    """Attaches the current respondent session token to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_token = _SESSION_TOKEN.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record; fields passed through ``extra={}`` are kept."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "session_token": getattr(record, "session_token", None),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED:
                continue
            try:
                json.dumps(value, ensure_ascii=False)
                payload[key] = value
            except TypeError:
                payload[key] = str(value)

        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """Replace root handlers with one stdout handler (JSON or plain text)."""
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(SessionTokenFilter())

    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s session=%(session_token)s %(message)s"
        ))

    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
