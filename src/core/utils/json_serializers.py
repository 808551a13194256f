"""Shared JSON serialization utilities for type-safe JSON encoding."""

from datetime import date, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any


def json_serializer(obj: Any) -> Any:
    """
    Fallback serializer for ``json.dumps(default=...)``.

    Keeps numbers numeric instead of converting everything to strings:
    - datetime/date -> ISO 8601 string
    - timedelta -> seconds as float
    - bytes -> length marker (payloads are never written to logs)
    - Path -> string
    - Enums -> value
    - Everything else -> string (fallback)
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return f"<{len(obj)} bytes>"
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


__all__ = ["json_serializer"]
