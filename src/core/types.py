"""
Core types shared across modules.

Kept free of third-party imports so that every package can depend on it.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Failures of the surrounding infrastructure that may succeed
                   on a later run (broker unreachable, request timeouts)
        PERMANENT: Failures that will not change on retry (bad configuration,
                   a corrupt or undecodable message)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
