"""
Logging setup for the CostPilot notification backend.

Every component logs through one of a fixed set of named loggers under the
``costpilot.`` namespace. Failures that are swallowed on purpose (channel
errors, persistence errors inside notify()) are logged with ``extra={...}``
fields so they stay searchable.

Environment Variables:
    COSTPILOT_ENV: ``production`` switches to JSON lines in rotating files
    COSTPILOT_LOG_LEVEL: DEBUG/INFO/WARNING/ERROR/CRITICAL (default: INFO)
    COSTPILOT_LOG_DIR: Directory for production log files (default: ./logs)
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional


NAMESPACE = "costpilot"

LOGGERS = {
    "api": "HTTP routes and the notifications WebSocket",
    "services": "Notification engine, store, preferences, health scan",
    "dispatch": "Email and push channel dispatchers",
    "push": "Push subscription lifecycle",
    "sync": "Change stream and live sync bridge",
    "db": "Database errors",
}

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# LogRecord attributes; anything else on a record came from extra={...}
_STANDARD_FIELDS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with extra fields merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _STANDARD_FIELDS and not key.startswith("_")
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


CONSOLE_FORMAT = "[%(asctime)s] %(levelname)s - %(name)s - %(message)s"


def _environment() -> str:
    return os.environ.get("COSTPILOT_ENV", "development").lower()


def _level() -> int:
    name = os.environ.get("COSTPILOT_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _handler_for(name: str, production: bool) -> logging.Handler:
    if not production:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        return handler

    log_dir = Path(os.environ.get("COSTPILOT_LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{name}.log",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(JSONFormatter())
    return handler


def configure_logging() -> Dict[str, logging.Logger]:
    """
    (Re)build handlers for every named logger.

    Production writes ``<name>.log`` per logger with size-based rotation;
    other environments write readable lines to stdout. Loggers do not
    propagate to the root logger.

    Returns:
        Mapping of short name to configured Logger
    """
    production = _environment() == "production"
    level = _level()

    configured = {}
    for name in LOGGERS:
        logger = logging.getLogger(f"{NAMESPACE}.{name}")
        logger.setLevel(level)
        logger.propagate = False
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.addHandler(_handler_for(name, production))
        configured[name] = logger
    return configured


_loggers: Optional[Dict[str, logging.Logger]] = None


def get_logger(name: str) -> logging.Logger:
    """
    Return one of the named loggers, configuring logging on first use.

    Raises:
        ValueError: If ``name`` is not one of LOGGERS

    Example:
        >>> get_logger("dispatch").warning(
        ...     "Email relay rejected message", extra={"status_code": 503}
        ... )
    """
    global _loggers

    if name not in LOGGERS:
        raise ValueError(f"Unknown logger name: {name}. Valid names: {', '.join(LOGGERS)}")
    if _loggers is None:
        _loggers = configure_logging()
    return _loggers[name]


def init_logging() -> Dict[str, logging.Logger]:
    """Configure logging at application startup."""
    global _loggers
    _loggers = configure_logging()
    return _loggers
