"""
Centralized logging configuration.

Loggers live under the ``campaign_dispatch`` namespace. Keyword context passed
to a ``StructuredLogger`` call travels on the record; the JSON file formatter
lifts the correlation keys (job, worker, request) to the top level so one
campaign can be followed across ticks.
"""
import logging
import logging.config
import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from pathlib import Path

ROOT_LOGGER = "campaign_dispatch"

# Lifted out of the context blob in JSON output
CORRELATION_KEYS = ("job_id", "worker_id", "request_id")

# Third-party loggers and the level they are held at
_LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "aiohttp.access": "WARNING",
    "sqlalchemy.engine": "WARNING",
}


class JSONFormatter(logging.Formatter):
    """One JSON object per line: correlation keys first, remaining context nested."""

    def format(self, record: logging.LogRecord) -> str:
        context = dict(getattr(record, "context", None) or {})
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CORRELATION_KEYS:
            if key in context:
                entry[key] = context.pop(key)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry["at"] = f"{record.module}:{record.funcName}:{record.lineno}"
        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger:
    """Keyword-context logger. ``bind`` returns a child carrying fixed context."""

    def __init__(self, name: str, context: Optional[Dict[str, Any]] = None):
        self.logger = logging.getLogger(name)
        self.context: Dict[str, Any] = dict(context or {})

    def bind(self, **context) -> "StructuredLogger":
        return StructuredLogger(self.logger.name, {**self.context, **context})

    def _emit(self, level: int, message: str, **kwargs):
        if not self.logger.isEnabledFor(level):
            return
        exc_info = kwargs.pop("exc_info", False)
        context = {**self.context, **{k: v for k, v in kwargs.items() if v is not None}}
        self.logger.log(level, message, exc_info=exc_info, extra={"context": context})

    def debug(self, message: str, **kwargs):
        self._emit(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._emit(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._emit(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._emit(logging.ERROR, message, **kwargs)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Configure the dispatch loggers.

    Args:
        log_level: level for the package and root loggers
        log_file: optional path for rotating JSON output
        enable_console: plain-text output on stdout
    """
    handlers: Dict[str, Dict[str, Any]] = {}
    if enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "plain",
        }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "json",
        }
    names = list(handlers)

    loggers: Dict[str, Dict[str, Any]] = {
        ROOT_LOGGER: {"level": log_level, "handlers": names, "propagate": False},
    }
    for name, level in _LIBRARY_LEVELS.items():
        loggers[name] = {"level": level, "handlers": names, "propagate": False}

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JSONFormatter},
            "plain": {"format": "%(asctime)s %(levelname)-7s %(name)s: %(message)s"},
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": log_level, "handlers": names},
    })


def get_logger(name: str) -> StructuredLogger:
    """Structured logger for ``name``, placed under the package namespace."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return StructuredLogger(name)
    return StructuredLogger(f"{ROOT_LOGGER}.{name}")


_audit = get_logger("audit")
_perf = get_logger("performance")


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    job_id: Optional[str] = None,
    request_id: Optional[str] = None
) -> None:
    """
    Audit trail entry for a job lifecycle event.

    Events: campaign_queued, job_claimed, snapshot_frozen, job_done,
    job_dead_lettered, dispatch_tick.
    """
    _audit.info(f"event {event_type}", event_type=event_type, job_id=job_id, request_id=request_id, **details)


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None
) -> None:
    _perf.info(f"timing {operation}", operation=operation, duration_ms=duration_ms, **(additional_data or {}))
