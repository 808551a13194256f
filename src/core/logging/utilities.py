"""Logging utility functions."""

import logging
from datetime import timedelta
from typing import Any

# Attribute names every LogRecord already carries; passing one in ``extra``
# makes Logger.makeRecord raise KeyError
_RESERVED_LOG_KEYS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

MAX_ERROR_MESSAGE_LENGTH = 500


def _safe_extra(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if k not in _RESERVED_LOG_KEYS}


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Fields land on the record as attributes, where the JSON formatter picks
    them up. ``exc_info`` is passed through to the logger.

    Example:
        log_with_context(
            logger, logging.INFO, "Accepted a new job",
            total=message.total,
        )
    """
    exc_info = kwargs.pop("exc_info", None)
    logger.log(level, msg, exc_info=exc_info, extra=_safe_extra(kwargs))


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log an exception with its type, message and error category.

    The category is taken from ``exc.category`` when the exception has one
    (every SpeedtestError does). Long messages are cut to 500 characters.
    """
    category = getattr(exc, "category", None)
    if category is not None and "error_category" not in kwargs:
        kwargs["error_category"] = getattr(category, "value", str(category))

    error_msg = str(exc)
    if len(error_msg) > MAX_ERROR_MESSAGE_LENGTH:
        error_msg = error_msg[:MAX_ERROR_MESSAGE_LENGTH] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    logger.log(
        level,
        msg,
        exc_info=exc if include_traceback else None,
        extra=_safe_extra(kwargs),
    )


def to_ms(duration: timedelta | float) -> float:
    """Convert a timedelta or a number of seconds to milliseconds, rounded to 3 places."""
    seconds = duration.total_seconds() if isinstance(duration, timedelta) else duration
    return round(seconds * 1000, 3)
