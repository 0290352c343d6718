"""
Logging setup for the compliance service.

Two output modes, picked from Settings.ENVIRONMENT:

    production   one JSON object per line, for the log shipper
    otherwise    coloured single-line console output

Every record passes through RequestContextFilter, which stamps it with
the request id and acting user bound by RequestLoggingMiddleware. Work
that runs outside a request (background dispatch, start-up) simply
carries ``None`` for both.

Domain identifiers passed with ``extra=`` (incident_id, alert_id, ...)
become top-level keys in the JSON output:

    logger.info("Alert %s published", alert.id, extra={"alert_id": alert.id})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import Settings, get_settings

_request_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "compliance_request_context", default=None,
)

# Keys lifted from `extra=` into JSON entries
STRUCTURED_FIELDS = (
    "incident_id",
    "alert_id",
    "user_id",
    "endpoint",
    "recipient_count",
    "notifications_sent",
    "failures",
    "duration_ms",
    "status_code",
)

# Third-party loggers held at WARNING unless asked otherwise
_QUIET_LOGGERS = ("uvicorn.access", "urllib3", "pywebpush", "aiosqlite")


# ═══════════════════════════════════════════════════════════════════════════
# Request context
# ═══════════════════════════════════════════════════════════════════════════

def bind_request_context(**values: Any) -> Token:
    """Bind request-scoped values; pass the token to reset_request_context."""
    return _request_context.set(dict(values))


def reset_request_context(token: Token) -> None:
    _request_context.reset(token)


def current_request_context() -> Dict[str, Any]:
    return _request_context.get() or {}


class RequestContextFilter(logging.Filter):
    """Copies the bound request id and acting user onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = current_request_context()
        record.request_id = ctx.get("request_id")
        if not hasattr(record, "user_id"):
            record.user_id = ctx.get("user_id")
        return True


# ═══════════════════════════════════════════════════════════════════════════
# Formatters
# ═══════════════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
            "request_id": getattr(record, "request_id", None),
        }
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info:
            entry["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            entry["exc_text"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """``12:00:01 INFO     [3f2a9c1d mgr-a] backend.app.alerts.dispatcher: ...``"""

    LEVEL_COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelname, self.RESET)
        scope = ""
        request_id = getattr(record, "request_id", None)
        if request_id:
            user = getattr(record, "user_id", None) or "-"
            scope = f" [{request_id[:8]} {user}]"

        line = (
            f"{colour}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
            f"{scope} {record.name}: {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ═══════════════════════════════════════════════════════════════════════════
# Setup
# ═══════════════════════════════════════════════════════════════════════════

def setup_logging(settings: Optional[Settings] = None) -> None:
    """Install one stdout handler on the root logger (replacing any others)."""
    settings = settings or get_settings()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JSONFormatter() if settings.is_production else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DATABASE_ECHO else logging.WARNING
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
