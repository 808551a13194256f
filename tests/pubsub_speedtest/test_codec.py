"""Tests for the raw message wire codec."""

import json

import pytest

from core.errors.exceptions import DecryptError, DeserializeError, MalformedMessage
from core.security.aead import AESGCMCipher
from pubsub_speedtest.codec import (
    COUNTER_SIZE,
    HEADER_SIZE,
    MAX_COUNTER,
    ByteMessage,
    StructMessage,
    decode_counters,
    decode_format,
    decode_kind,
    decode_message,
    decode_payload,
    decode_uvarint,
    encode_counters,
    encode_header,
    encode_tag,
    encode_uvarint,
)

KEY = b"0123456789abcdef0123456789abcdef"


class TestHeader:

    def test_encode_header(self):
        assert encode_header("byte", "encr") == b"byteencr"

    def test_short_tag_is_zero_padded(self):
        assert encode_tag("js") == b"js\x00\x00"

    def test_long_tag_is_truncated(self):
        assert encode_tag("jsonx") == b"json"

    def test_decode_tags(self):
        raw = b"jsonbyte" + b"{}"

        assert decode_kind(raw) == "json"
        assert decode_format(raw) == "byte"
        assert decode_payload(raw) == b"{}"

    def test_decode_arbitrary_bytes(self):
        raw = b"\xff\x00\x80A" + b"\x00\x00\x00\x00"

        assert decode_kind(raw) == "\xff\x00\x80A"
        assert decode_format(raw) == "\x00\x00\x00\x00"
        assert decode_payload(raw) == b""

    @pytest.mark.parametrize("length", [0, 1, 4, 7])
    def test_short_message_is_malformed(self, length):
        raw = b"x" * length
        for decode in (decode_kind, decode_format, decode_payload):
            with pytest.raises(MalformedMessage):
                decode(raw)


class TestVarint:

    @pytest.mark.parametrize(
        "value, encoded",
        [
            (0, b"\x00"),
            (1, b"\x01"),
            (127, b"\x7f"),
            (128, b"\x80\x01"),
            (300, b"\xac\x02"),
            (16000, b"\x80\x7d"),
        ],
    )
    def test_known_encodings(self, value, encoded):
        assert encode_uvarint(value) == encoded
        assert decode_uvarint(encoded) == value

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            encode_uvarint(-1)

    def test_unterminated_decodes_to_zero(self):
        assert decode_uvarint(b"\x80" * COUNTER_SIZE) == 0
        assert decode_uvarint(b"") == 0

    def test_trailing_bytes_ignored(self):
        assert decode_uvarint(b"\x05\xff\xff") == 5


class TestCounters:

    def test_fixed_slots(self):
        encoded = encode_counters(1, 300)

        assert len(encoded) == 2 * COUNTER_SIZE
        assert encoded[:COUNTER_SIZE] == b"\x01" + b"\x00" * 7
        assert encoded[COUNTER_SIZE:] == b"\xac\x02" + b"\x00" * 6

    def test_round_trip_largest_counter(self):
        assert decode_counters(encode_counters(MAX_COUNTER - 1, MAX_COUNTER)) == (
            MAX_COUNTER - 1,
            MAX_COUNTER,
        )

    def test_counter_too_large(self):
        with pytest.raises(ValueError):
            encode_counters(0, MAX_COUNTER + 1)

    def test_short_payload_is_malformed(self):
        with pytest.raises(MalformedMessage):
            decode_counters(b"\x00" * 15)


class TestByteMessage:

    def test_round_trip(self):
        message = ByteMessage(count=7, total=1000, data=b"\x00" * 16000)

        decoded = ByteMessage.from_payload(message.to_payload())

        assert decoded == message
        assert (decoded.count, decoded.total, len(decoded.data)) == (7, 1000, 16000)

    def test_empty_data(self):
        decoded = ByteMessage.from_payload(encode_counters(0, 1))

        assert decoded == ByteMessage(0, 1, b"")


class TestStructMessage:

    def test_serializes_with_wire_names(self):
        payload = StructMessage(count=1, total=2, data={"Name": "x"}).to_payload()

        assert json.loads(payload) == {"Count": 1, "Total": 2, "Data": {"Name": "x"}}

    def test_round_trip(self):
        message = StructMessage(count=3, total=10, data=[1, 2.5, "three", None])

        assert StructMessage.from_payload(message.to_payload()) == message

    def test_missing_fields_default(self):
        message = StructMessage.from_payload(b"{}")

        assert (message.count, message.total, message.data) == (0, 0, None)

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b'{"Count": -1, "Total": 5}',
            b'{"Count": 1.5, "Total": 5}',
            b'{"Count": "1", "Total": 5}',
            b'{"Count": 18446744073709551616, "Total": 5}',
            b"\xff\xfe",
        ],
    )
    def test_invalid_payload(self, payload):
        with pytest.raises(DeserializeError):
            StructMessage.from_payload(payload)


class TestDecodeMessage:

    def test_byte_kind(self):
        raw = b"bytebyte" + ByteMessage(4, 5, b"abc").to_payload()

        assert decode_message(raw) == ByteMessage(4, 5, b"abc")

    def test_json_kind(self):
        raw = b"jsonbyte" + StructMessage(count=4, total=5).to_payload()

        message = decode_message(raw)

        assert isinstance(message, StructMessage)
        assert (message.count, message.total) == (4, 5)

    def test_unknown_kind_defaults_to_bytes(self):
        raw = b"xmlzbyte" + ByteMessage(2, 9).to_payload()

        assert decode_message(raw) == ByteMessage(2, 9)

    def test_unknown_format_passes_through(self):
        raw = b"bytezzzz" + ByteMessage(2, 9).to_payload()

        assert decode_message(raw) == ByteMessage(2, 9)

    def test_encrypted(self):
        cipher = AESGCMCipher(KEY)
        raw = b"byteencr" + cipher.encrypt(ByteMessage(1, 2, b"z").to_payload())

        assert decode_message(raw, cipher) == ByteMessage(1, 2, b"z")

    def test_encrypted_without_cipher(self):
        raw = b"byteencr" + AESGCMCipher(KEY).encrypt(b"x" * 16)

        with pytest.raises(DecryptError):
            decode_message(raw)

    def test_encrypted_with_wrong_key(self):
        raw = b"byteencr" + AESGCMCipher(KEY).encrypt(ByteMessage(1, 2).to_payload())

        with pytest.raises(DecryptError):
            decode_message(raw, AESGCMCipher(b"z" * 32))

    def test_truncated_byte_payload(self):
        with pytest.raises(MalformedMessage):
            decode_message(b"bytebyte" + b"\x01\x02")

    def test_truncated_header(self):
        with pytest.raises(MalformedMessage):
            decode_message(b"byte")

    def test_header_size(self):
        assert HEADER_SIZE == 8
