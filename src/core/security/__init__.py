"""
Security primitives.

Provides the authenticated-encryption pair used for ``encr`` payloads.
"""

from core.security.aead import (
    KEY_SIZE,
    AESGCMCipher,
    decrypt,
    encrypt,
    validate_key,
)

__all__ = [
    "KEY_SIZE",
    "AESGCMCipher",
    "encrypt",
    "decrypt",
    "validate_key",
]
