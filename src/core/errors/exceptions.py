"""
Unified exception hierarchy for the speed test.

Every error carries an ErrorCategory so that callers can decide whether a
failure is fatal for the run or local to a single message.
"""

from aiokafka.errors import KafkaError

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class SpeedtestError(Exception):
    """
    Base exception for all speed test errors.

    Attributes:
        message: Human-readable error description
        category: Error classification
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Startup Errors
# =============================================================================


class ConfigError(SpeedtestError):
    """Invalid or incomplete configuration. Fatal before any message is sent."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Per-Message Errors (recovered locally by the consumer)
# =============================================================================


class MessageError(SpeedtestError):
    """Base class for errors raised while decoding a single delivered message."""

    category = ErrorCategory.PERMANENT


class MalformedMessage(MessageError):
    """Raw message or payload is too short for its declared layout."""

    pass


class DecryptError(MessageError):
    """AEAD authentication failed or the ciphertext was truncated."""

    pass


class DeserializeError(MessageError):
    """Structured payload could not be parsed into a message."""

    pass


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(SpeedtestError):
    """Error from the publish/subscribe fabric (producer or consumer client)."""

    category = ErrorCategory.TRANSIENT


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    if isinstance(exc, SpeedtestError):
        return exc.category

    if isinstance(exc, KafkaError):
        return ErrorCategory.TRANSIENT

    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    default_class: type = SpeedtestError,
    context: dict | None = None,
) -> SpeedtestError:
    """Wrap a generic exception in appropriate SpeedtestError subclass."""
    if isinstance(exc, SpeedtestError):
        if context:
            exc.context.update(context)
        return exc

    context = context or {}
    context["error_type"] = type(exc).__name__

    if classify_exception(exc) == ErrorCategory.TRANSIENT:
        return TransportError(str(exc), cause=exc, context=context)

    return default_class(str(exc), cause=exc, context=context)
