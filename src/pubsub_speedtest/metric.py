"""
Control-plane metric exchanged between producer and consumer.

Serialized as JSON with the field names ``Job``, ``Time`` and ``Count``.
"""

import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.errors.exceptions import DeserializeError

JOB_BASE = "base"
JOB_RECEIVED = "received"

_FRACTION_PATTERN = re.compile(r"\.\d{7,}")


class Metric(BaseModel):
    """Timestamped job event.

    ``base`` marks the producer's start and never leaves the producer.
    ``received`` is the consumer's completion signal; its ``count`` is the
    total of the job that completed.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    job: str = Field(..., alias="Job")
    time: datetime = Field(..., alias="Time")
    count: int = Field(default=0, alias="Count", ge=0)

    @field_validator("time", mode="before")
    @classmethod
    def _truncate_fraction(cls, value: Any) -> Any:
        # Peers may send nanosecond precision; datetime holds microseconds
        if isinstance(value, str):
            return _FRACTION_PATTERN.sub(lambda m: m.group(0)[:7], value)
        return value

    @field_validator("time")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def now(cls, job: str, count: int = 0) -> "Metric":
        return cls(job=job, time=datetime.now(timezone.utc), count=count)

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Metric":
        """Parse a metric from the control topic.

        Raises:
            DeserializeError: If ``raw`` is not a valid metric
        """
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise DeserializeError("Invalid metric message", cause=e) from e
