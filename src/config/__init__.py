"""Configuration loading for the speed test.

Configuration is loaded from a single YAML file (JSON is accepted too, being a
YAML subset)::

    speedtest:
      subject: speedtest
      total: 1000
      timeout_seconds: 30
      scenario: emptybytes
      num_bytes: 16000
      aes_encryption_key: ${SPEEDTEST_AES_KEY}
    kafka:
      connection:
        bootstrap_servers: localhost:9092

Usage:
    >>> from config import load_config
    >>> config = load_config(Path("config.yaml"))
    >>> config.data_topic
    'speedtest.data'

Settings are resolved in the following priority (highest to lowest):

1. Environment variables (KAFKA_BOOTSTRAP_SERVERS, SPEEDTEST_AES_KEY)
2. YAML configuration file (with ${VAR} expansion)
3. Dataclass defaults
"""

from config.config import (
    DEFAULT_CONFIG_FILE,
    SCENARIOS,
    SpeedtestConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "SpeedtestConfig",
    "SCENARIOS",
    "DEFAULT_CONFIG_FILE",
]
