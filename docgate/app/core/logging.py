"""Logging setup for docgate.

Records flow through the standard logging module. Three output styles are
available via ``LOG_FORMAT``: plain text, text with resolution context
appended, and one JSON object per line for log shippers.

Resolution context (which project, which upstream URL, which retry attempt)
travels on the record through ``extra=get_log_context(...)``.
"""

import json
import logging
import logging.config
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from docgate.app.core.config import Settings, settings

# Context attributes attached to records via extra=
LOG_FIELDS = (
    "namespace",
    "project",
    "repo_context",
    "url",
    "status_code",
    "attempt",
)

# Libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_STRUCTURED_FORMAT = (
    _TEXT_FORMAT
    + " - repo=%(repo_context)s status=%(status_code)s attempt=%(attempt)s"
)

# Attributes set by logging itself; everything else arrived through extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON object.

    Known context fields are promoted to the top level; any other extra
    attribute is collected under ``"extra"``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for name in LOG_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in LOG_FIELDS
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record the context attributes, defaulting to None.

    The structured text format references them directly, so records logged
    without ``extra=`` must still carry them.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for name in LOG_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


def _handler(stream: str, level: str, formatter: str) -> Dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "stream": stream,
        "level": level,
        "formatter": formatter,
        "filters": ["context"],
    }


def get_logging_config(config: Optional[Settings] = None) -> Dict[str, Any]:
    """Build the dictConfig mapping for the configured level and format."""
    config = config or settings
    log_format = getattr(config, "log_format", "text").lower()
    log_level = getattr(config, "log_level", "INFO").upper()

    formatters: Dict[str, Any] = {
        "standard": {"format": _TEXT_FORMAT},
        "structured": {"format": _STRUCTURED_FORMAT},
    }
    if log_format == "json":
        formatters["json"] = {"()": JSONFormatter}
        formatter = "json"
    elif log_format == "structured":
        formatter = "structured"
    else:
        formatter = "standard"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {"context": {"()": ContextFilter}},
        "handlers": {
            "console": _handler("ext://sys.stdout", log_level, formatter),
            # Errors are duplicated to stderr for process supervisors
            "error_console": _handler("ext://sys.stderr", "ERROR", formatter),
        },
        "loggers": {
            "docgate": {
                "level": log_level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }


def setup_logging(config: Optional[Settings] = None) -> None:
    """Apply the logging configuration from ``config`` or the module settings."""
    logging.config.dictConfig(get_logging_config(config))
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = "docgate") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    namespace: Optional[str] = None,
    project: Optional[str] = None,
    repo_context: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, dropping fields that are None.

    Example:
        >>> logger.info(
        ...     "Resolved documentation",
        ...     extra=get_log_context(namespace="gitlab-org", project="gitlab"),
        ... )
    """
    fields = {"namespace": namespace, "project": project, "repo_context": repo_context}
    fields.update(extra)
    return {key: value for key, value in fields.items() if value is not None}
