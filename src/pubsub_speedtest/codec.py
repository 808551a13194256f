"""
Wire codec for speed test messages.

Every message on the data topic is self-describing::

    RawMessage ::= kind[4] format[4] payload

    payload(kind=byte)   ::= count[8] total[8] data[...]
    payload(kind=json)   ::= {"Count": uint64, "Total": uint64, "Data": <value>}
    payload(format=encr) ::= nonce[12] || AES-GCM(payload of the plain message)

Counters are unsigned LEB128 varints, each written into a fixed 8 byte slot.
Tag decoding never fails; classifying unknown tags is left to the consumer.
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.errors.exceptions import DecryptError, DeserializeError, MalformedMessage
from core.security.aead import AESGCMCipher

TAG_SIZE = 4
HEADER_SIZE = 2 * TAG_SIZE
COUNTER_SIZE = 8
COUNTERS_SIZE = 2 * COUNTER_SIZE

# Largest value whose varint encoding fits in one counter slot
MAX_COUNTER = (1 << (7 * COUNTER_SIZE)) - 1

KIND_BYTE = "byte"
KIND_JSON = "json"
FORMAT_BYTE = "byte"
FORMAT_ENCRYPTED = "encr"


# =============================================================================
# Header
# =============================================================================


def encode_tag(tag: str) -> bytes:
    """Encode a tag into its 4 byte slot, zero padded or truncated."""
    return tag.encode("latin-1")[:TAG_SIZE].ljust(TAG_SIZE, b"\x00")


def encode_header(kind: str, fmt: str) -> bytes:
    return encode_tag(kind) + encode_tag(fmt)


def _require_header(raw: bytes) -> None:
    if len(raw) < HEADER_SIZE:
        raise MalformedMessage(
            f"Message too short: {len(raw)} bytes < header({HEADER_SIZE})",
            context={"message_size": len(raw)},
        )


def decode_kind(raw: bytes) -> str:
    _require_header(raw)
    return bytes(raw[:TAG_SIZE]).decode("latin-1")


def decode_format(raw: bytes) -> str:
    _require_header(raw)
    return bytes(raw[TAG_SIZE:HEADER_SIZE]).decode("latin-1")


def decode_payload(raw: bytes) -> bytes:
    _require_header(raw)
    return bytes(raw[HEADER_SIZE:])


# =============================================================================
# Counters
# =============================================================================


def encode_uvarint(value: int) -> bytes:
    """Encode an unsigned integer as a LEB128 varint."""
    if value < 0:
        raise ValueError(f"Cannot varint-encode a negative value: {value}")
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def decode_uvarint(buf: bytes) -> int:
    """Decode a LEB128 varint from the start of ``buf``.

    Returns 0 when the varint does not terminate inside ``buf``.
    """
    value = 0
    shift = 0
    for byte in buf:
        if byte < 0x80:
            return value | (byte << shift)
        value |= (byte & 0x7F) << shift
        shift += 7
    return 0


def _encode_counter(value: int) -> bytes:
    if value > MAX_COUNTER:
        raise ValueError(f"Counter {value} does not fit in a {COUNTER_SIZE} byte varint slot")
    return encode_uvarint(value).ljust(COUNTER_SIZE, b"\x00")


def encode_counters(count: int, total: int) -> bytes:
    """Encode ``count`` and ``total`` into the 16 byte counter region."""
    return _encode_counter(count) + _encode_counter(total)


def decode_counters(payload: bytes) -> tuple[int, int]:
    """Decode ``(count, total)`` from the start of a byte-kind payload."""
    if len(payload) < COUNTERS_SIZE:
        raise MalformedMessage(
            f"Byte payload too short: {len(payload)} bytes < counters({COUNTERS_SIZE})",
            context={"message_size": len(payload)},
        )
    return (
        decode_uvarint(payload[:COUNTER_SIZE]),
        decode_uvarint(payload[COUNTER_SIZE:COUNTERS_SIZE]),
    )


# =============================================================================
# Messages
# =============================================================================


class Message(Protocol):
    """Anything carrying a sequence number and the size of its job."""

    @property
    def count(self) -> int: ...

    @property
    def total(self) -> int: ...


@dataclass(frozen=True)
class ByteMessage:
    """Plain byte payload: fixed counter region followed by opaque data."""

    count: int
    total: int
    data: bytes = b""

    def to_payload(self) -> bytes:
        return encode_counters(self.count, self.total) + self.data

    @classmethod
    def from_payload(cls, payload: bytes) -> "ByteMessage":
        count, total = decode_counters(payload)
        return cls(count=count, total=total, data=bytes(payload[COUNTERS_SIZE:]))


class StructMessage(BaseModel):
    """Structured payload serialized as JSON with ``Count``/``Total``/``Data`` keys."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    count: int = Field(default=0, alias="Count", ge=0, le=(1 << 64) - 1, strict=True)
    total: int = Field(default=0, alias="Total", ge=0, le=(1 << 64) - 1, strict=True)
    data: Any = Field(default=None, alias="Data")

    def to_payload(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_payload(cls, payload: bytes) -> "StructMessage":
        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            raise DeserializeError(
                f"Invalid JSON message: {e.error_count()} validation error(s)",
                cause=e,
            ) from e


DecodedMessage = Union[ByteMessage, StructMessage]


def decode_message(raw: bytes, cipher: Optional[AESGCMCipher] = None) -> DecodedMessage:
    """Fully decode a raw message received from the data topic.

    Encrypted payloads are decrypted with ``cipher``; any other format passes
    through. Kinds other than ``json`` are read as byte messages.

    Raises:
        MalformedMessage: If the message or its byte payload is truncated
        DecryptError: If an encrypted payload fails authentication
        DeserializeError: If a JSON payload cannot be parsed
    """
    payload = decode_payload(raw)

    if decode_format(raw) == FORMAT_ENCRYPTED:
        if cipher is None:
            raise DecryptError("Encrypted message received but no key is configured")
        payload = cipher.decrypt(payload)

    if decode_kind(raw) == KIND_JSON:
        return StructMessage.from_payload(payload)
    return ByteMessage.from_payload(payload)
