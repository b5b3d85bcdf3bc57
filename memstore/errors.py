"""Error taxonomy and structured error log for memstore.

Backends raise these types; the MemoryStore boundary catches them, logs
them, and turns them into ``False`` / ``[]`` results. ``log_error`` appends
one JSON line per failure to ``~/.memstore/errors.log`` so operators can
see why a call degraded.
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import datetime
from enum import Enum
from pathlib import Path

LOG_DIR = Path.home() / ".memstore"
ERROR_LOG = LOG_DIR / "errors.log"

logger = logging.getLogger("memstore")


class Severity(str, Enum):
    """Error severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class MemstoreError(Exception):
    """Base exception for all memstore errors."""

    severity: Severity = Severity.ERROR

    def __init__(self, message: str, *, component: str = "memstore", detail: str = ""):
        super().__init__(message)
        self.component = component
        self.detail = detail
        self.timestamp = datetime.now().isoformat()


class ValidationError(MemstoreError):
    """A required input (owner, content, query) is missing or empty."""

    severity = Severity.WARNING


class BackendUnavailable(MemstoreError):
    """A backend cannot serve the request: process down, table missing, call failed."""

    severity = Severity.WARNING


class ProtocolError(BackendUnavailable):
    """The semantic server answered with a malformed or error-shaped response."""


class RpcTimeout(ProtocolError):
    """No complete response line arrived before the deadline."""


class PersistenceError(MemstoreError):
    """The relational store rejected an operation."""

    severity = Severity.ERROR


class ConfigError(MemstoreError):
    """Configuration-related errors (missing file, bad format, etc.)."""

    severity = Severity.WARNING


def log_error(
    error: MemstoreError | Exception,
    *,
    component: str = "memstore",
    sink: logging.Logger | None = None,
):
    """Log an error to the error log (~/.memstore/errors.log).

    Appends a structured JSON line for machine-readable error tracking and
    echoes the message to ``sink`` (the "memstore" logger by default).
    """
    tb = traceback.format_exc()
    entry = {
        "timestamp": datetime.now().isoformat(),
        "component": getattr(error, "component", component),
        "severity": getattr(error, "severity", Severity.ERROR).value,
        "type": type(error).__name__,
        "message": str(error),
        "detail": getattr(error, "detail", ""),
        "traceback": tb if tb.strip() != "NoneType: None" else "",
    }
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        with open(ERROR_LOG, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except OSError:
        pass

    level = getattr(logging, entry["severity"].upper(), logging.ERROR)
    (sink or logger).log(level, "[%s] %s", entry["component"], entry["message"])


def get_recent_errors(limit: int = 20) -> list[dict]:
    """Read recent errors from the error log."""
    if not ERROR_LOG.exists():
        return []
    lines = ERROR_LOG.read_text().strip().split("\n")
    errors = []
    for line in lines[-limit:]:
        try:
            errors.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return errors


def clear_error_log():
    """Clear the error log."""
    if ERROR_LOG.exists():
        ERROR_LOG.write_text("")
