"""
Scenario catalogue.

Maps the configured scenario name to a composed generator:

    json            Framed("json", "byte", BaseStruct(record))
    json.encrypted  Framed("json", "encr", Encrypted(BaseStruct(record), key))
    emptybytes      Framed("byte", "byte", BaseBytes(zeros(num_bytes)))
    file            Framed("byte", "byte", BaseBytes(file contents))
    file.encrypted  Framed("byte", "encr", Encrypted(BaseBytes(file contents), key))
"""

import logging
from pathlib import Path
from typing import Any, Dict

from config.config import SpeedtestConfig
from core.errors.exceptions import ConfigError
from core.logging import get_logger, log_with_context
from pubsub_speedtest.codec import FORMAT_BYTE, FORMAT_ENCRYPTED, KIND_BYTE, KIND_JSON
from pubsub_speedtest.generators import (
    BaseBytes,
    BaseStruct,
    Encrypted,
    Framed,
    Generator,
)

logger = get_logger(__name__)


def sample_record() -> Dict[str, Any]:
    """Fixed, moderately nested record used as the structured payload."""
    return {
        "Name": "Steve Rogers",
        "Pets": [
            {"Bites": True, "CanFly": True, "Ignores": "Polly"},
            {"Bites": False, "CanFly": False, "Ignores": "Nothing"},
            {"Bites": True, "CanFly": False, "Ignores": "Cat/MrCat/*"},
            {"Bites": False, "CanFly": False, "Ignores": "Turtle"},
            {"Bites": False, "CanFly": True, "Ignores": "Parrot2"},
            {"Bites": True, "CanFly": False, "Ignores": "Leave my backyard!"},
        ],
        "LastGolfScores": [83, 87, 89, 104, 90, 113, 104, 88, 88, 98, 79, 97, 120, 110],
        "Points": 345.32,
        "Games": [
            {"Against": "Stoke", "Fun": False, "MinutesPlayed": 30.2},
            {"Against": "Flyfield", "Fun": False, "MinutesPlayed": 60.4},
            {"Against": "Figgerish", "Fun": False, "MinutesPlayed": 73.4},
            {"Against": "Tomland", "Fun": True, "MinutesPlayed": 30.4},
            {"Against": "Huddersfield", "Fun": True, "MinutesPlayed": 33.12},
            {"Against": "Fulham", "Fun": True, "MinutesPlayed": 13.112},
            {"Against": "Brentford", "Fun": False, "MinutesPlayed": 94.0},
            {"Against": "Magneto", "Fun": False, "MinutesPlayed": 1000.4},
            {"Against": "Mom", "Fun": True, "MinutesPlayed": 90.4},
            {"Against": "Sis", "Fun": True, "MinutesPlayed": 45.2},
            {"Against": "Pop", "Fun": True, "MinutesPlayed": 89.2},
            {"Against": "Brother", "Fun": False, "MinutesPlayed": 10.4},
        ],
    }


def _read_file(filename: str) -> bytes:
    try:
        data = Path(filename).read_bytes()
    except OSError as e:
        raise ConfigError(f"Unable to read file {filename}", cause=e) from e
    log_with_context(
        logger,
        logging.DEBUG,
        "Loaded file payload",
        message_size=len(data),
    )
    return data


def build_generator(config: SpeedtestConfig) -> Generator:
    """Build the generator for ``config.scenario``.

    File scenarios read their file once, here.

    Raises:
        ConfigError: On an unknown scenario, an unreadable file or a bad key
    """
    scenario = config.scenario

    if scenario == "json":
        return Framed(KIND_JSON, FORMAT_BYTE, BaseStruct(sample_record()))
    if scenario == "json.encrypted":
        return Framed(
            KIND_JSON,
            FORMAT_ENCRYPTED,
            Encrypted(BaseStruct(sample_record()), config.key),
        )
    if scenario == "emptybytes":
        return Framed(KIND_BYTE, FORMAT_BYTE, BaseBytes(bytes(config.num_bytes)))
    if scenario == "file":
        return Framed(KIND_BYTE, FORMAT_BYTE, BaseBytes(_read_file(config.filename)))
    if scenario == "file.encrypted":
        return Framed(
            KIND_BYTE,
            FORMAT_ENCRYPTED,
            Encrypted(BaseBytes(_read_file(config.filename)), config.key),
        )

    raise ConfigError(f"Unknown scenario '{scenario}'", context={"scenario": scenario})
