"""Structured key=value logging for the case simulation engine.

Every module logger is a child of the ``casesim`` package logger, which owns
the single stdout handler. Correlation ids (case, attempt, job) are promoted
to their own fields so one learner's turns can be followed across modules.
"""

import logging
import sys
from typing import Any

from pydantic import ValidationError

ROOT_LOGGER = "casesim"
CORRELATION_KEYS = ("case_id", "attempt_id", "job_id")


def _render(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text) or "=" in text:
        return '"' + text.replace('"', '\\"') + '"'
    return text


class StructuredFormatter(logging.Formatter):
    """key=value formatter; values with spaces are quoted."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        for key in CORRELATION_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        log_data.update(getattr(record, "extra_data", None) or {})

        line = " ".join(f"{k}={_render(v)}" for k, v in log_data.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _resolve_level() -> int:
    try:
        from casesim.core.config import get_settings

        settings = get_settings()
    except ValidationError:
        return logging.INFO

    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL)
    return logging.DEBUG if settings.CASESIM_ENV == "dev" else logging.INFO


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        root.addHandler(handler)
        root.setLevel(_resolve_level())
        root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger that writes through the package handler.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger under the ``casesim`` hierarchy
    """
    _configure_root()
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log with additional context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Context fields; case_id, attempt_id and job_id become
            correlation fields, the rest are appended as key=value pairs
    """
    extra: dict[str, Any] = {key: kwargs.pop(key) for key in CORRELATION_KEYS if key in kwargs}
    extra["extra_data"] = kwargs
    logger.log(level, msg, extra=extra)
