"""Tests for scenario to generator mapping."""

import json

import pytest

from core.errors.exceptions import ConfigError
from core.security.aead import AESGCMCipher
from pubsub_speedtest.codec import (
    ByteMessage,
    StructMessage,
    decode_format,
    decode_kind,
    decode_message,
    decode_payload,
)
from pubsub_speedtest.scenarios import build_generator, sample_record


class TestSampleRecord:

    def test_shape(self):
        record = sample_record()

        assert record["Name"] == "Steve Rogers"
        assert len(record["Pets"]) == 6
        assert len(record["LastGolfScores"]) == 14
        assert record["Points"] == 345.32
        assert len(record["Games"]) == 12
        assert record["Games"][7] == {"Against": "Magneto", "Fun": False, "MinutesPlayed": 1000.4}

    def test_json_serializable(self):
        assert json.loads(json.dumps(sample_record())) == sample_record()

    def test_fresh_copy_per_call(self):
        first = sample_record()
        first["Name"] = "Tony Stark"

        assert sample_record()["Name"] == "Steve Rogers"


class TestBuildGenerator:

    @pytest.fixture
    def cipher(self, aes_key):
        return AESGCMCipher(aes_key)

    def test_emptybytes(self, speedtest_config):
        speedtest_config.num_bytes = 16000
        raw = build_generator(speedtest_config)(0, 1000)

        assert decode_kind(raw) == "byte"
        assert decode_format(raw) == "byte"
        assert decode_message(raw) == ByteMessage(0, 1000, bytes(16000))

    def test_emptybytes_zero_length(self, speedtest_config):
        speedtest_config.num_bytes = 0

        assert decode_message(build_generator(speedtest_config)(2, 3)) == ByteMessage(2, 3)

    def test_json(self, speedtest_config):
        speedtest_config.scenario = "json"
        raw = build_generator(speedtest_config)(4, 5)

        assert raw[:8] == b"jsonbyte"
        payload = json.loads(decode_payload(raw))
        assert payload["Count"] == 4
        assert payload["Total"] == 5
        assert payload["Data"] == sample_record()

    def test_json_encrypted(self, speedtest_config, cipher):
        speedtest_config.scenario = "json.encrypted"
        raw = build_generator(speedtest_config)(1, 2)

        assert raw[:8] == b"jsonencr"
        message = decode_message(raw, cipher)
        assert isinstance(message, StructMessage)
        assert message.data == sample_record()

    def test_file(self, speedtest_config, tmp_path):
        path = tmp_path / "payload.bin"
        path.write_bytes(b"\x00file contents\xff")
        speedtest_config.scenario = "file"
        speedtest_config.filename = str(path)

        raw = build_generator(speedtest_config)(0, 1)

        assert raw[:8] == b"bytebyte"
        assert decode_message(raw) == ByteMessage(0, 1, b"\x00file contents\xff")

    def test_file_is_read_once(self, speedtest_config, tmp_path):
        path = tmp_path / "payload.bin"
        path.write_bytes(b"original")
        speedtest_config.scenario = "file"
        speedtest_config.filename = str(path)

        generator = build_generator(speedtest_config)
        path.write_bytes(b"changed")

        assert decode_message(generator(0, 1)).data == b"original"

    def test_file_encrypted(self, speedtest_config, tmp_path, cipher):
        path = tmp_path / "payload.bin"
        path.write_bytes(b"secret")
        speedtest_config.scenario = "file.encrypted"
        speedtest_config.filename = str(path)

        raw = build_generator(speedtest_config)(3, 4)

        assert raw[:8] == b"byteencr"
        assert decode_message(raw, cipher) == ByteMessage(3, 4, b"secret")

    @pytest.mark.parametrize("scenario", ["file", "file.encrypted"])
    def test_missing_file(self, speedtest_config, tmp_path, scenario):
        speedtest_config.scenario = scenario
        speedtest_config.filename = str(tmp_path / "missing.bin")

        with pytest.raises(ConfigError, match="Unable to read file"):
            build_generator(speedtest_config)

    def test_unknown_scenario(self, speedtest_config):
        speedtest_config.scenario = "xml"

        with pytest.raises(ConfigError, match="Unknown scenario"):
            build_generator(speedtest_config)

    @pytest.mark.parametrize("scenario", ["json.encrypted", "file.encrypted"])
    def test_bad_key(self, speedtest_config, tmp_path, scenario):
        path = tmp_path / "payload.bin"
        path.write_bytes(b"x")
        speedtest_config.scenario = scenario
        speedtest_config.filename = str(path)
        speedtest_config.aes_encryption_key = "short"

        with pytest.raises(ConfigError):
            build_generator(speedtest_config)
