"""
pytest configuration for speed test tests.

Adds src directory to Python path for imports and provides shared fixtures.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from config.config import SpeedtestConfig  # noqa: E402

TEST_KEY = "0123456789abcdef0123456789abcdef"


@pytest.fixture
def aes_key() -> bytes:
    return TEST_KEY.encode("utf-8")


@pytest.fixture
def speedtest_config() -> SpeedtestConfig:
    """Valid configuration for a small emptybytes job."""
    return SpeedtestConfig(
        subject="speedtest-test",
        total=5,
        timeout_seconds=5.0,
        scenario="emptybytes",
        num_bytes=64,
        aes_encryption_key=TEST_KEY,
        bootstrap_servers="localhost:9092",
    )
