"""
Message generators.

A generator turns ``(count, total)`` into a raw message. Generators are
composed by construction::

    Framed("byte", "encr", Encrypted(BaseBytes(data), key))

Base generators produce an unframed buffer whose 8 header bytes are zero;
``Encrypted`` replaces the payload behind that header with its ciphertext;
``Framed`` stamps the kind and format tags into the header.
"""

from abc import ABC, abstractmethod
from typing import Any

from core.security.aead import AESGCMCipher
from pubsub_speedtest.codec import (
    HEADER_SIZE,
    ByteMessage,
    StructMessage,
    encode_header,
)

_EMPTY_HEADER = bytes(HEADER_SIZE)


class Generator(ABC):
    """Produces the raw message for one position of a job."""

    @abstractmethod
    def generate(self, count: int, total: int) -> bytes:
        ...

    def __call__(self, count: int, total: int) -> bytes:
        return self.generate(count, total)


class BaseBytes(Generator):
    """Byte-kind payload carrying the same ``data`` on every call."""

    def __init__(self, data: bytes):
        self.data = bytes(data)

    def generate(self, count: int, total: int) -> bytes:
        return _EMPTY_HEADER + ByteMessage(count, total, self.data).to_payload()


class BaseStruct(Generator):
    """JSON-kind payload wrapping ``value``.

    ``value`` is serialized on every call and must not be mutated while a
    job is being generated.
    """

    def __init__(self, value: Any):
        self.value = value

    def generate(self, count: int, total: int) -> bytes:
        message = StructMessage(count=count, total=total, data=self.value)
        return _EMPTY_HEADER + message.to_payload()


class Encrypted(Generator):
    """Encrypts the payload of ``inner`` with AES-256-GCM.

    Raises:
        ConfigError: At construction if ``key`` is not 32 bytes
    """

    def __init__(self, inner: Generator, key: bytes):
        self.inner = inner
        self._cipher = AESGCMCipher(key)

    def generate(self, count: int, total: int) -> bytes:
        plain = self.inner.generate(count, total)
        return _EMPTY_HEADER + self._cipher.encrypt(plain[HEADER_SIZE:])


class Framed(Generator):
    """Stamps ``kind`` and ``fmt`` into the header of ``inner``'s output."""

    def __init__(self, kind: str, fmt: str, inner: Generator):
        self.kind = kind
        self.fmt = fmt
        self.inner = inner
        self._header = encode_header(kind, fmt)

    def generate(self, count: int, total: int) -> bytes:
        return self._header + self.inner.generate(count, total)[HEADER_SIZE:]
