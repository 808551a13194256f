"""
AES-256-GCM authenticated encryption for message payloads.

Ciphertexts are self-contained: a fresh random 12-byte nonce is drawn for
every call and prepended to the sealed payload::

    nonce[12] || ciphertext || tag[16]

Both roles must share the same 32-byte key.
"""

import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.errors.exceptions import ConfigError, DecryptError

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


def validate_key(key: bytes) -> bytes:
    """Return ``key`` unchanged if it is a valid AES-256 key.

    Raises:
        ConfigError: If the key is not exactly 32 bytes
    """
    if len(key) != KEY_SIZE:
        raise ConfigError(
            f"AES-GCM key must be {KEY_SIZE} bytes, got {len(key)}",
            context={"key_length": len(key)},
        )
    return key


class AESGCMCipher:
    """AES-256-GCM wrapper drawing a random nonce per encryption."""

    def __init__(self, key: bytes):
        self._aesgcm = AESGCM(validate_key(key))

    def encrypt(self, plaintext: bytes) -> bytes:
        nonce = secrets.token_bytes(NONCE_SIZE)
        return nonce + self._aesgcm.encrypt(nonce, plaintext, None)

    def decrypt(self, ciphertext: bytes) -> bytes:
        if len(ciphertext) < NONCE_SIZE + TAG_SIZE:
            raise DecryptError(
                f"Ciphertext too short: {len(ciphertext)} bytes "
                f"< nonce({NONCE_SIZE}) + tag({TAG_SIZE})",
                context={"ciphertext_length": len(ciphertext)},
            )
        nonce, sealed = ciphertext[:NONCE_SIZE], ciphertext[NONCE_SIZE:]
        try:
            return self._aesgcm.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise DecryptError("AES-GCM authentication failed", cause=e) from e


def encrypt(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt ``plaintext`` with ``key``; output is nonce-prefixed."""
    return AESGCMCipher(key).encrypt(plaintext)


def decrypt(ciphertext: bytes, key: bytes) -> bytes:
    """Decrypt a nonce-prefixed ciphertext produced by :func:`encrypt`.

    Raises:
        DecryptError: On authentication failure or truncated input
        ConfigError: If ``key`` is not 32 bytes
    """
    return AESGCMCipher(key).decrypt(ciphertext)


__all__ = [
    "KEY_SIZE",
    "NONCE_SIZE",
    "TAG_SIZE",
    "AESGCMCipher",
    "validate_key",
    "encrypt",
    "decrypt",
]
