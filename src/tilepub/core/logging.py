"""Logging configuration for tilepub."""

import contextvars
import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict

# Country currently being extracted or scanned, attached to JSON records
country_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "country_code", default=None
)

_STANDARD_FIELDS = frozenset(
    [
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName",
        "relativeCreated", "thread", "threadName", "exc_info",
        "exc_text", "stack_info", "getMessage", "taskName",
    ]
)


class JsonLogFormatter(logging.Formatter):
    """Single-line JSON formatter.

    Every record becomes one JSON object so log shippers can parse it
    without multiline handling. Exceptions and tracebacks are embedded
    as strings.
    """

    SEVERITY_MAP = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARNING",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as single-line JSON.

        Args:
            record: Log record to format

        Returns:
            Single-line JSON string
        """
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": self.SEVERITY_MAP.get(record.levelno, "DEFAULT"),
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        country_code = country_context.get()
        if country_code:
            log_entry["country_code"] = country_code

        # Fields passed via logger.info(..., extra={...})
        for key, value in record.__dict__.items():
            if key not in _STANDARD_FIELDS and key not in log_entry:
                log_entry[key] = value

        if record.exc_info:
            exc_text = "".join(traceback.format_exception(*record.exc_info))
            log_entry["exception"] = exc_text
            log_entry["exception_type"] = record.exc_info[0].__name__ if record.exc_info[0] else "Unknown"
            log_entry["exception_message"] = str(record.exc_info[1]) if record.exc_info[1] else ""

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """Configure logging for the pipeline.

    Logs go to stdout. LOG_FORMAT=json switches to JsonLogFormatter,
    anything else uses a plain text format.

    Args:
        level: Log level name overriding LOG_LEVEL (used by -v/-q)
        log_format: "json" or "text", overriding LOG_FORMAT
    """
    from tilepub.core.config import settings

    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)

    if (log_format or settings.LOG_FORMAT).lower() == "json":
        formatter: logging.Formatter = JsonLogFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Chatty HTTP client loggers stay at WARNING unless debugging
    for logger_name in ["httpx", "httpcore", "google.auth"]:
        logging.getLogger(logger_name).setLevel(
            log_level if log_level <= logging.DEBUG else logging.WARNING
        )
