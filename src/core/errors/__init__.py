"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- SpeedtestError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    ConfigError,
    DecryptError,
    DeserializeError,
    # Enums
    ErrorCategory,
    MalformedMessage,
    MessageError,
    # Base classes
    SpeedtestError,
    TransportError,
    # Classification utilities
    classify_exception,
    wrap_exception,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "SpeedtestError",
    "ConfigError",
    "MessageError",
    "MalformedMessage",
    "DecryptError",
    "DeserializeError",
    "TransportError",
    # Classification utilities
    "classify_exception",
    "wrap_exception",
]
