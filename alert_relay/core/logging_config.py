"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (machine-parseable)
    • Pretty console logs for development (human-readable)
    • Cycle-scoped context (cycle_id) attached to every record

Usage:
    from alert_relay.core.logging_config import setup_logging, get_logger

    setup_logging(settings)
    logger = get_logger(__name__)
    logger.info("Queued new alerts", extra={"count": 3})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from alert_relay.core.config import Settings

# ── Context variable for cycle-scoped data ──
_cycle_context: ContextVar[Dict[str, Any]] = ContextVar("cycle_context", default={})

# extra= keys copied into JSON output
EXTRA_FIELDS = (
    "alert_id", "subscriber_id", "channel", "status", "attempts", "count",
    "duration_ms", "status_code", "topic",
)


def set_cycle_context(**kwargs: Any) -> None:
    """Set cycle-scoped log context (call at the top of a cycle)."""
    _cycle_context.set(kwargs)


def clear_cycle_context() -> None:
    _cycle_context.set({})


def get_cycle_context() -> Dict[str, Any]:
    """Get current cycle context."""
    return _cycle_context.get()


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):
    """Machine-parseable JSON log output for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        ctx = get_cycle_context()
        if ctx:
            log_entry["context"] = ctx

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_entry, default=str)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """Coloured human-readable format for local development."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ts = self.formatTime(record, "%H:%M:%S")
        msg = record.getMessage()

        ctx = get_cycle_context()
        ctx_str = ""
        if ctx.get("cycle_id"):
            ctx_str = f" [{ctx['cycle_id']}]"

        extras = [
            f"{key}={getattr(record, key)}"
            for key in EXTRA_FIELDS
            if hasattr(record, key)
        ]
        if extras:
            msg = f"{msg} ({', '.join(extras)})"

        formatted = (
            f"{color}{ts} {record.levelname:8s}{self.RESET}"
            f"{ctx_str} {record.name}: {msg}"
        )

        if record.exc_info and record.exc_info[1]:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


# ── Setup ──

def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging based on environment."""
    settings = settings or Settings()
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    if settings.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(PrettyFormatter())

    root.addHandler(handler)

    # Quieten noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DATABASE_ECHO else logging.WARNING
    )


def get_logger(name: str) -> logging.Logger:
    """Get a named logger — call once per module."""
    return logging.getLogger(name)
