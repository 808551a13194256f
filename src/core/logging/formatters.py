"""Log formatters for JSON and console output."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.logging.kafka_context import get_kafka_context
from core.utils.json_serializers import json_serializer


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Job identity
        "total",
        "count",
        "received_counter",
        "outcome",
        "scenario",
        "kind",
        "format",
        # Timing
        "duration_ms",
        "duration_per_message_ms",
        "generation_ms",
        "timeout_seconds",
        # Sizes
        "message_size",
        "num_bytes",
        # Errors
        "error_category",
        "error_message",
        "error_type",
        "reason",
        # Transport
        "topic",
        "bootstrap_servers",
        "security_protocol",
        "partitions",
        "signal",
    ]

    # Numeric fields are coerced so that log consumers can aggregate them
    NUMERIC_FIELDS = {
        "duration_ms": float,
        "duration_per_message_ms": float,
        "generation_ms": float,
        "timeout_seconds": float,
        "total": int,
        "count": int,
        "received_counter": int,
        "message_size": int,
        "num_bytes": int,
        "message_partition": int,
        "message_offset": int,
    }

    def _ensure_type(self, field: str, value: Any) -> Any:
        if field not in self.NUMERIC_FIELDS or value is None:
            return value
        try:
            return self.NUMERIC_FIELDS[field](value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _base_log_entry(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    @staticmethod
    def _inject_context(log_entry: dict[str, Any], log_context: dict[str, Any]) -> None:
        for field in ("run_id", "role", "subject", "job_total"):
            if log_context.get(field):
                log_entry[field] = log_context[field]

    def _inject_message_context(self, log_entry: dict[str, Any]) -> None:
        for field, value in get_kafka_context().items():
            log_entry[field] = self._ensure_type(field, value)

    @staticmethod
    def _should_include_source_location(record: logging.LogRecord) -> bool:
        return record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL)

    def _inject_extra_fields(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = self._ensure_type(field, value)

    def _inject_exception(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        if not record.exc_info:
            return

        exc_type, exc_value, _ = record.exc_info
        log_entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._base_log_entry(record)

        self._inject_context(log_entry, get_log_context())
        self._inject_message_context(log_entry)

        if self._should_include_source_location(record):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        self._inject_extra_fields(log_entry, record)
        self._inject_exception(log_entry, record)

        return json.dumps(log_entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    Selected extra fields are appended as ``key=value`` pairs.
    """

    # ANSI color codes
    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    TAG_FIELDS = ("total", "count", "outcome", "reason", "error_message")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        level_name = record.levelname
        if not self._use_colors:
            return level_name

        color = self.COLORS.get(record.levelno, "")
        if not color:
            return level_name

        return f"{color}{level_name}{self.RESET}"

    @staticmethod
    def _build_prefix(level_name: str, log_context: dict[str, Any]) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            level_name,
        ]

        if log_context["role"]:
            parts.append(f"[{log_context['role']}]")

        return " - ".join(parts)

    def _build_tags(self, record: logging.LogRecord) -> list[str]:
        tags = []
        for field in self.TAG_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                tags.append(f"{field}={value}")
        return tags

    def format(self, record: logging.LogRecord) -> str:
        log_context = get_log_context()

        level_name = self._format_level_name(record)
        prefix = self._build_prefix(level_name, log_context)
        tags = self._build_tags(record)

        line = f"{prefix} - {record.getMessage()}"
        if tags:
            line = f"{line} ({', '.join(tags)})"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line
