"""Per-record transport context for structured logging."""

from contextvars import ContextVar
from typing import Any, Dict, Optional

_message_topic: ContextVar[str] = ContextVar("message_topic", default="")
_message_partition: ContextVar[int] = ContextVar("message_partition", default=-1)
_message_offset: ContextVar[int] = ContextVar("message_offset", default=-1)


def set_kafka_context(
    topic: Optional[str] = None,
    partition: Optional[int] = None,
    offset: Optional[int] = None,
) -> None:
    """
    Set transport context variables for structured logging.

    Args:
        topic: Topic the record was delivered on
        partition: Partition number (-1 when the transport has none)
        offset: Record offset within the partition
    """
    if topic is not None:
        _message_topic.set(topic)
    if partition is not None:
        _message_partition.set(partition)
    if offset is not None:
        _message_offset.set(offset)


def get_kafka_context() -> Dict[str, Any]:
    """Return the current record context; empty when no record is being handled."""
    topic = _message_topic.get()
    if not topic:
        return {}
    context: Dict[str, Any] = {"message_topic": topic}
    if _message_partition.get() >= 0:
        context["message_partition"] = _message_partition.get()
    if _message_offset.get() >= 0:
        context["message_offset"] = _message_offset.get()
    return context


def clear_kafka_context() -> None:
    _message_topic.set("")
    _message_partition.set(-1)
    _message_offset.set(-1)


class KafkaLogContext:
    """
    Context manager that tags every log line with the record being handled.

    Usage:
        with KafkaLogContext(topic="speedtest.data", partition=0, offset=12345):
            await handler(record.value)
    """

    def __init__(
        self,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        self.new_context = {"topic": topic, "partition": partition, "offset": offset}
        self.old_context: Dict[str, Any] = {}

    def __enter__(self) -> "KafkaLogContext":
        self.old_context = {
            "topic": _message_topic.get(),
            "partition": _message_partition.get(),
            "offset": _message_offset.get(),
        }
        set_kafka_context(**{k: v for k, v in self.new_context.items() if v is not None})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_kafka_context(**self.old_context)
        return False
