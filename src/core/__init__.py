"""
Core library: domain-agnostic infrastructure for the speed test.

Modules:
    errors      - Exception hierarchy with error categories
    logging     - Structured JSON/console logging with context propagation
    security    - AES-256-GCM authenticated encryption
    utils       - JSON serialization helpers

Nothing in this package knows about message framing or the producer/consumer
protocol; those live in ``pubsub_speedtest``.
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
