"""
Publish/subscribe transports.

Both roles talk to the fabric through the small :class:`Transport` surface:
publish bytes to a topic, register a handler for a topic, flush, drain.

- :class:`KafkaTransport` runs over Apache Kafka with aiokafka.
- :class:`LoopbackTransport` fans out in-process, for single-process runs
  and tests.

Handlers for one subscription are invoked one at a time, in delivery order.
A handler exception is logged and the subscription keeps going.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.errors import KafkaError
from aiokafka.structs import TopicPartition

from config.config import SpeedtestConfig
from core.errors.exceptions import TransportError
from core.logging import KafkaLogContext, get_logger, log_exception, log_with_context
from pubsub_speedtest.monitoring import record_published

logger = get_logger(__name__)

Handler = Callable[[bytes], Awaitable[None]]

# Poll interval while waiting for partitions of a new subscription
ASSIGNMENT_POLL_SECONDS = 0.1


class Transport(Protocol):
    async def start(self) -> None: ...

    async def publish(self, topic: str, value: bytes) -> None: ...

    async def subscribe(self, topic: str, handler: Handler) -> None: ...

    async def flush(self) -> None: ...

    async def drain(self) -> None: ...


async def _invoke(handler: Handler, topic: str, value: bytes) -> None:
    try:
        await handler(value)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        log_exception(logger, e, "Subscription handler failed", topic=topic)


# =============================================================================
# Kafka
# =============================================================================


class KafkaTransport:
    """
    Kafka transport over one shared producer and one consumer per subscription.

    Subscriptions use no consumer group, so every role sees every record on
    the topic. A subscription starts at the end of each assigned partition;
    records published before ``subscribe`` returns are not delivered.

    Publishing is fire-and-forget: records are queued into the producer's
    batches and delivery failures are logged, never awaited per message.

    Usage:
        >>> transport = KafkaTransport(config)
        >>> await transport.start()
        >>> try:
        ...     await transport.subscribe("speedtest.metric", on_metric)
        ...     await transport.publish("speedtest.data", raw)
        ... finally:
        ...     await transport.drain()
    """

    def __init__(self, config: SpeedtestConfig):
        self.config = config
        self._producer: Optional[AIOKafkaProducer] = None
        self._consumers: List[AIOKafkaConsumer] = []
        self._tasks: List[asyncio.Task] = []
        self._delivery_errors = 0

    @property
    def delivery_errors(self) -> int:
        """Number of published records the broker failed to accept."""
        return self._delivery_errors

    def _connection_config(self) -> Dict[str, Any]:
        kafka_config: Dict[str, Any] = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "request_timeout_ms": self.config.request_timeout_ms,
        }

        # Configure security based on protocol
        if self.config.security_protocol != "PLAINTEXT":
            kafka_config["security_protocol"] = self.config.security_protocol
            if self.config.security_protocol.startswith("SASL"):
                kafka_config["sasl_mechanism"] = self.config.sasl_mechanism
                kafka_config["sasl_plain_username"] = self.config.sasl_plain_username
                kafka_config["sasl_plain_password"] = self.config.sasl_plain_password

        return kafka_config

    def _producer_config(self) -> Dict[str, Any]:
        settings = self.config.producer
        kafka_config = self._connection_config()

        # aiokafka requires int for 0/1, or "all"
        acks_value = settings.get("acks", 1)
        if isinstance(acks_value, str) and acks_value.isdigit():
            acks_value = int(acks_value)
        kafka_config["acks"] = acks_value

        # aiokafka uses 'max_batch_size', config uses 'batch_size'
        if "batch_size" in settings:
            kafka_config["max_batch_size"] = settings["batch_size"]
        if "linger_ms" in settings:
            kafka_config["linger_ms"] = settings["linger_ms"]
        if "compression_type" in settings:
            compression = settings["compression_type"]
            kafka_config["compression_type"] = None if compression == "none" else compression
        kafka_config["max_request_size"] = settings.get("max_request_size", 10 * 1024 * 1024)

        return kafka_config

    def _consumer_config(self) -> Dict[str, Any]:
        settings = self.config.consumer
        kafka_config = self._connection_config()
        kafka_config.update({
            "group_id": None,
            "enable_auto_commit": False,
            "auto_offset_reset": "latest",
        })
        for key in ("max_poll_records", "fetch_max_wait_ms", "fetch_min_bytes", "fetch_max_bytes"):
            if key in settings:
                kafka_config[key] = settings[key]
        return kafka_config

    async def start(self) -> None:
        """
        Start the shared producer.

        Raises:
            TransportError: If the producer cannot connect
        """
        if self._producer is not None:
            logger.warning("Transport already started, ignoring duplicate start call")
            return

        producer = AIOKafkaProducer(**self._producer_config())
        try:
            await producer.start()
        except KafkaError as e:
            await producer.stop()
            raise TransportError(
                f"Unable to connect to Kafka at {self.config.bootstrap_servers}",
                cause=e,
            ) from e
        self._producer = producer

        log_with_context(
            logger,
            logging.INFO,
            "Kafka producer started successfully",
            bootstrap_servers=self.config.bootstrap_servers,
            security_protocol=self.config.security_protocol,
        )

    def _on_delivery(self, future: asyncio.Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._delivery_errors += 1
            log_exception(
                logger,
                exc,
                "Record delivery failed",
                level=logging.WARNING,
                include_traceback=False,
            )

    async def publish(self, topic: str, value: bytes) -> None:
        """Queue ``value`` for ``topic`` without waiting for the broker's ack."""
        if self._producer is None:
            raise TransportError("Transport not started", context={"topic": topic})

        try:
            delivery = await self._producer.send(topic, value=value)
        except KafkaError as e:
            raise TransportError(f"Failed to publish to {topic}", cause=e) from e
        delivery.add_done_callback(self._on_delivery)
        record_published(topic)

    async def subscribe(self, topic: str, handler: Handler) -> None:
        """
        Subscribe ``handler`` to ``topic``.

        Returns once the consumer is positioned at the end of every assigned
        partition; later records are handed to ``handler`` by a background task.

        Raises:
            TransportError: If the consumer cannot connect or gets no partitions
        """
        consumer = AIOKafkaConsumer(topic, **self._consumer_config())
        try:
            await consumer.start()
            partitions = await self._wait_for_assignment(consumer, topic)
            await consumer.seek_to_end(*partitions)
            # Resolve positions now so the subscription starts here
            for tp in partitions:
                await consumer.position(tp)
        except (KafkaError, asyncio.TimeoutError) as e:
            await consumer.stop()
            raise TransportError(f"Unable to subscribe to {topic}", cause=e) from e

        self._consumers.append(consumer)
        self._tasks.append(
            asyncio.create_task(
                self._consume_loop(consumer, topic, handler),
                name=f"subscription:{topic}",
            )
        )

        log_with_context(
            logger,
            logging.INFO,
            "Subscribed to topic",
            topic=topic,
            partitions=len(partitions),
        )

    async def _wait_for_assignment(
        self, consumer: AIOKafkaConsumer, topic: str
    ) -> List[TopicPartition]:
        deadline = time.monotonic() + self.config.request_timeout_ms / 1000
        assignment = consumer.assignment()
        while not assignment:
            if time.monotonic() >= deadline:
                raise asyncio.TimeoutError(f"No partitions assigned for {topic}")
            await asyncio.sleep(ASSIGNMENT_POLL_SECONDS)
            assignment = consumer.assignment()
        return sorted(assignment, key=lambda tp: (tp.topic, tp.partition))

    async def _consume_loop(
        self, consumer: AIOKafkaConsumer, topic: str, handler: Handler
    ) -> None:
        while True:
            try:
                data = await consumer.getmany(timeout_ms=1000)
            except asyncio.CancelledError:
                raise
            except KafkaError as e:
                log_exception(logger, e, "Error fetching records", topic=topic)
                await asyncio.sleep(1)
                continue

            for records in data.values():
                for record in records:
                    with KafkaLogContext(
                        topic=record.topic,
                        partition=record.partition,
                        offset=record.offset,
                    ):
                        await _invoke(handler, topic, record.value)

    async def flush(self) -> None:
        if self._producer is not None:
            await self._producer.flush()

    async def drain(self) -> None:
        """
        Stop subscriptions, flush pending records and close every client.

        Cleanup errors are logged, not raised. Safe to call multiple times.
        """
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        for consumer in self._consumers:
            try:
                await consumer.stop()
            except Exception as e:
                log_exception(logger, e, "Error stopping Kafka consumer")
        self._consumers = []

        if self._producer is not None:
            try:
                await self._producer.flush()
                await self._producer.stop()
                logger.info("Kafka producer stopped successfully")
            except Exception as e:
                log_exception(logger, e, "Error stopping Kafka producer")
            finally:
                self._producer = None


# =============================================================================
# Loopback
# =============================================================================


class LoopbackTransport:
    """
    In-process transport with one queue and one delivery task per subscription.

    Every subscription to a topic receives every message published to it after
    it subscribed. :meth:`flush` waits until every queued message has been
    handled, including messages published by handlers meanwhile.
    """

    def __init__(self):
        self._subscriptions: Dict[str, List[asyncio.Queue]] = {}
        self._tasks: List[asyncio.Task] = []
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    async def start(self) -> None:
        self._closed = False

    async def publish(self, topic: str, value: bytes) -> None:
        if self._closed:
            raise TransportError("Transport is drained", context={"topic": topic})

        for queue in self._subscriptions.get(topic, []):
            self._pending += 1
            self._idle.clear()
            queue.put_nowait(bytes(value))
        record_published(topic)

    async def subscribe(self, topic: str, handler: Handler) -> None:
        if self._closed:
            raise TransportError("Transport is drained", context={"topic": topic})

        queue: asyncio.Queue = asyncio.Queue()
        self._subscriptions.setdefault(topic, []).append(queue)
        self._tasks.append(
            asyncio.create_task(
                self._deliver(queue, topic, handler),
                name=f"loopback:{topic}",
            )
        )
        log_with_context(logger, logging.DEBUG, "Subscribed to topic", topic=topic)

    async def _deliver(self, queue: asyncio.Queue, topic: str, handler: Handler) -> None:
        while True:
            value = await queue.get()
            try:
                await _invoke(handler, topic, value)
            finally:
                self._pending -= 1
                if self._pending == 0:
                    self._idle.set()

    async def flush(self) -> None:
        await self._idle.wait()

    async def drain(self) -> None:
        self._closed = True
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._subscriptions = {}
        self._pending = 0
        self._idle.set()
