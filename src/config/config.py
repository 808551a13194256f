"""Speed test configuration from YAML file.

Loads from config.yaml (or any YAML/JSON file) with all settings in one place:
- Speed test job settings (subject, total, timeout, scenario, payload, key)
- Kafka connection settings
- Producer and consumer client tuning

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from core.errors.exceptions import ConfigError
from core.security.aead import KEY_SIZE

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("config.yaml")
DEFAULT_SUBJECT = "speedtest"
DEFAULT_BOOTSTRAP_SERVERS = "localhost:9092"

SCENARIOS = ("json", "json.encrypted", "emptybytes", "file", "file.encrypted")
FILE_SCENARIOS = ("file", "file.encrypted")

SECURITY_PROTOCOLS = ["PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL"]
SASL_MECHANISMS = ["PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512"]


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        # Support both ${VAR} and ${VAR:-default} syntax
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


@dataclass
class SpeedtestConfig:
    """Speed test configuration.

    Configuration structure:
        speedtest:
          subject: speedtest
          total: 1000
          timeout_seconds: 30
          scenario: emptybytes
          num_bytes: 16000
          filename: ""
          aes_encryption_key: ${SPEEDTEST_AES_KEY}
        kafka:
          connection: {...}   # Shared connection settings
          producer: {...}     # AIOKafkaProducer tuning
          consumer: {...}     # AIOKafkaConsumer tuning

    All Kafka timing values in milliseconds unless otherwise noted.
    """

    # =========================================================================
    # JOB SETTINGS
    # =========================================================================
    subject: str = DEFAULT_SUBJECT
    total: int = 0
    timeout_seconds: float = 30.0
    scenario: str = "emptybytes"
    num_bytes: int = 0
    filename: str = ""
    aes_encryption_key: str = ""

    # =========================================================================
    # CONNECTION SETTINGS (shared by every client of the run)
    # =========================================================================
    bootstrap_servers: str = DEFAULT_BOOTSTRAP_SERVERS
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 30000

    # =========================================================================
    # CLIENT SETTINGS
    # =========================================================================
    producer: Dict[str, Any] = field(default_factory=dict)
    consumer: Dict[str, Any] = field(default_factory=dict)

    @property
    def data_topic(self) -> str:
        """Topic carrying job messages, producer to consumer."""
        return f"{self.subject}.data"

    @property
    def metric_topic(self) -> str:
        """Topic carrying completion metrics, consumer to producer."""
        return f"{self.subject}.metric"

    @property
    def key(self) -> bytes:
        return self.aes_encryption_key.encode("utf-8")

    def validate(self) -> None:
        """Validate configuration for correctness and constraints.

        Raises:
            ConfigError: On the first violated constraint
        """
        if len(self.key) != KEY_SIZE:
            raise ConfigError(
                f"aes_encryption_key must be exactly {KEY_SIZE} bytes, got {len(self.key)}"
            )

        if not self.subject:
            raise ConfigError("subject must not be empty")

        if not self.bootstrap_servers:
            raise ConfigError("bootstrap_servers is required in kafka.connection section")

        if self.total < 1:
            raise ConfigError(f"total must be >= 1, got {self.total}")

        if self.timeout_seconds <= 0:
            raise ConfigError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")

        if self.scenario not in SCENARIOS:
            raise ConfigError(
                f"scenario must be one of {list(SCENARIOS)}, got '{self.scenario}'"
            )

        if self.scenario in FILE_SCENARIOS and not self.filename:
            raise ConfigError(f"scenario '{self.scenario}' requires a filename")

        if self.num_bytes < 0:
            raise ConfigError(f"num_bytes must be >= 0, got {self.num_bytes}")

        self._validate_enum(
            {"security_protocol": self.security_protocol},
            "security_protocol",
            SECURITY_PROTOCOLS,
            "kafka.connection",
        )
        if self.security_protocol.startswith("SASL"):
            self._validate_enum(
                {"sasl_mechanism": self.sasl_mechanism},
                "sasl_mechanism",
                SASL_MECHANISMS,
                "kafka.connection",
            )

        self._validate_producer_settings(self.producer, "kafka.producer")
        self._validate_consumer_settings(self.consumer, "kafka.consumer")

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str
    ) -> None:
        """Validate that a setting's value is in a list of valid values."""
        if key in settings and settings[key] not in valid_values:
            raise ConfigError(
                f"{context}: {key} must be one of {valid_values}, "
                f"got '{settings[key]}'"
            )

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: int,
        context: str
    ) -> None:
        """Coerce an integer setting in place and check its minimum (inclusive).

        Values expanded from ``${VAR}`` arrive as strings.
        """
        if key not in settings:
            return
        try:
            value = int(settings[key])
        except (TypeError, ValueError) as e:
            raise ConfigError(
                f"{context}: {key} must be an integer, got '{settings[key]}'",
                cause=e,
            ) from e
        if value < min_value:
            raise ConfigError(
                f"{context}: {key} must be >= {min_value}, got {value}"
            )
        settings[key] = value

    def _validate_producer_settings(self, settings: Dict[str, Any], context: str) -> None:
        self._validate_enum(settings, "acks", ["0", "1", "all", 0, 1], context)
        self._validate_enum(settings, "compression_type", ["none", "gzip", "snappy", "lz4", "zstd"], context)
        self._validate_min(settings, "batch_size", 0, context)
        self._validate_min(settings, "linger_ms", 0, context)
        self._validate_min(settings, "max_request_size", 1, context)

    def _validate_consumer_settings(self, settings: Dict[str, Any], context: str) -> None:
        self._validate_min(settings, "max_poll_records", 1, context)
        self._validate_min(settings, "fetch_max_wait_ms", 0, context)
        self._validate_min(settings, "fetch_min_bytes", 1, context)

    def redacted(self) -> Dict[str, Any]:
        """Return the configuration as a dict with secrets masked."""
        data = asdict(self)
        for secret in ("aes_encryption_key", "sasl_plain_password"):
            if data.get(secret):
                data[secret] = "***"
        return data


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> SpeedtestConfig:
    """Load speed test configuration from a YAML file and validate it.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    KAFKA_BOOTSTRAP_SERVERS and SPEEDTEST_AES_KEY override the file.

    Raises:
        ConfigError: If the file is missing, malformed or fails validation
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from file: {config_path}")
    try:
        yaml_data = load_yaml(config_path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}", cause=e) from e
    yaml_data = _expand_env_vars(yaml_data)

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        yaml_data = _deep_merge(yaml_data, overrides)

    if "speedtest" not in yaml_data:
        raise ConfigError(
            "Invalid config file: missing 'speedtest:' section\n"
            "See config.yaml.example for correct structure"
        )

    job = yaml_data.get("speedtest") or {}
    kafka_config = yaml_data.get("kafka") or {}
    connection = kafka_config.get("connection") or {}

    try:
        config = SpeedtestConfig(
            subject=job.get("subject") or DEFAULT_SUBJECT,
            total=int(job.get("total", 0)),
            timeout_seconds=float(job.get("timeout_seconds", 30.0)),
            scenario=job.get("scenario", "emptybytes"),
            num_bytes=int(job.get("num_bytes", 0)),
            filename=job.get("filename") or "",
            aes_encryption_key=os.getenv("SPEEDTEST_AES_KEY") or job.get("aes_encryption_key") or "",
            bootstrap_servers=(
                os.getenv("KAFKA_BOOTSTRAP_SERVERS")
                or connection.get("bootstrap_servers")
                or DEFAULT_BOOTSTRAP_SERVERS
            ),
            security_protocol=connection.get("security_protocol", "PLAINTEXT"),
            sasl_mechanism=connection.get("sasl_mechanism", "PLAIN"),
            sasl_plain_username=connection.get("sasl_plain_username", ""),
            sasl_plain_password=connection.get("sasl_plain_password", ""),
            request_timeout_ms=int(connection.get("request_timeout_ms", 30000)),
            producer=kafka_config.get("producer") or {},
            consumer=kafka_config.get("consumer") or {},
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value in {config_path}: {e}", cause=e) from e

    logger.debug("Configuration loaded successfully:")
    logger.debug(f"  - Bootstrap servers: {config.bootstrap_servers}")
    logger.debug(f"  - Subject: {config.subject}")
    logger.debug(f"  - Scenario: {config.scenario}")

    logger.debug("Validating configuration...")
    config.validate()
    logger.debug("Configuration validation passed")

    return config


_speedtest_config: Optional[SpeedtestConfig] = None


def get_config() -> SpeedtestConfig:
    """Get or load the singleton config instance."""
    global _speedtest_config
    if _speedtest_config is None:
        _speedtest_config = load_config()
    return _speedtest_config


def set_config(config: SpeedtestConfig) -> None:
    """Set the singleton config instance (useful for testing)."""
    global _speedtest_config
    _speedtest_config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _speedtest_config
    _speedtest_config = None


def _cli_main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Speed Test Configuration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show effective configuration (secrets redacted)
  python -m config.config --validate --show-merged

  # JSON output for automation
  python -m config.config --config ./config.yaml --validate --json
        """,
    )
    parser.add_argument("--validate", action="store_true", help="Validate configuration")
    parser.add_argument(
        "--show-merged",
        action="store_true",
        help="Display effective configuration with secrets redacted",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (default: ./config.yaml)",
    )
    parser.add_argument("--json", action="store_true", help="Output in JSON format")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if not args.validate and not args.show_merged:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)
    except ConfigError as e:
        if args.json:
            print(json.dumps({"validation": {"passed": False, "errors": [str(e)]}}))
        else:
            print(f"✗ Validation error: {e}", file=sys.stderr)
        return 1

    output: Dict[str, Any] = {}
    if args.validate:
        if args.json:
            output["validation"] = {"passed": True, "errors": []}
        else:
            print("✓ Configuration validation passed")
            print(f"  - Scenario: {config.scenario}")
            print(f"  - Topics: {config.data_topic}, {config.metric_topic}")

    if args.show_merged:
        if args.json:
            output["merged_config"] = config.redacted()
        else:
            print("\nConfiguration:")
            print("=" * 80)
            print(yaml.dump(config.redacted(), default_flow_style=False, sort_keys=False))
            print("=" * 80)

    if args.json:
        print(json.dumps(output, indent=2))

    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
