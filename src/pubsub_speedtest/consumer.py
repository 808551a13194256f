"""
Consumer role.

Listens on ``<subject>.data``, folds every delivery into the job progress
state and publishes a ``received`` metric on ``<subject>.metric`` once a job
is complete.

A job is complete when its last numbered message (``count == total - 1``)
arrives and the number of deliveries observed since the job's first message
agrees with it. Every delivery counts, including ones that cannot be
decrypted or parsed, so lost or duplicated messages prevent completion
instead of going unnoticed.

A job whose first message is lost never completes on a fresh consumer: the
counter is one short when the last message arrives. Deliveries observed while
no job is running (garbage, truncated messages) still advance the counter,
and only a first message resets it, so idle traffic can make up for a lost
first message and let such a job complete.
"""

import asyncio
import logging
import threading
from typing import Optional

from config.config import SpeedtestConfig
from core.errors.exceptions import DecryptError, DeserializeError, MalformedMessage
from core.logging import get_logger, log_with_context
from core.security.aead import AESGCMCipher
from pubsub_speedtest.codec import decode_message
from pubsub_speedtest.metric import JOB_RECEIVED, Metric
from pubsub_speedtest.monitoring import (
    OUTCOME_ACCEPTED,
    OUTCOME_DECRYPT_FAILED,
    OUTCOME_DESERIALIZE_FAILED,
    OUTCOME_MALFORMED,
    OUTCOME_SENTINEL,
    record_delivery,
    record_job_completed,
)
from pubsub_speedtest.transport import Transport

logger = get_logger(__name__)


class ConsumerDriver:
    """
    Job progress tracking for the consumer role.

    ``observe`` is the synchronous classification step and is safe to call
    from several threads; ``handle`` is the async subscription handler.

    Usage:
        >>> driver = ConsumerDriver(transport, config)
        >>> await driver.run(shutdown_event)
    """

    def __init__(self, transport: Transport, config: SpeedtestConfig):
        self.transport = transport
        self.config = config
        self._cipher = AESGCMCipher(config.key)
        self._lock = threading.Lock()
        self._received_counter = 0
        self._job_in_progress = False
        self._jobs_completed = 0

    @property
    def received_counter(self) -> int:
        """Deliveries observed since, and including, the current job's first message."""
        with self._lock:
            return self._received_counter

    @property
    def job_in_progress(self) -> bool:
        with self._lock:
            return self._job_in_progress

    @property
    def jobs_completed(self) -> int:
        with self._lock:
            return self._jobs_completed

    def observe(self, raw: bytes) -> Optional[Metric]:
        """
        Fold one delivery into the job state.

        Every delivery advances the counter by one on its way out, whatever
        happens to it. A first message (``count == 0``) resets the counter
        before that, and the completion check sees the count of deliveries
        that came before the current one.

        Returns:
            The completion metric to publish, or None
        """
        with self._lock:
            try:
                return self._classify(raw)
            finally:
                self._received_counter += 1

    def _classify(self, raw: bytes) -> Optional[Metric]:
        try:
            message = decode_message(raw, self._cipher)
        except MalformedMessage as e:
            self._discard(OUTCOME_MALFORMED, e)
            return None
        except DecryptError as e:
            self._discard(OUTCOME_DECRYPT_FAILED, e)
            return None
        except DeserializeError as e:
            self._discard(OUTCOME_DESERIALIZE_FAILED, e)
            return None

        total = message.total
        if total == 0:
            record_delivery(OUTCOME_SENTINEL)
            logger.debug("Ignoring message with Total=0")
            return None

        record_delivery(OUTCOME_ACCEPTED)

        if message.count == 0:
            self._received_counter = 0
            self._job_in_progress = True
            log_with_context(
                logger,
                logging.INFO,
                f"Accepted a new job with Total={total}",
                total=total,
            )

        if message.count == total - 1 and self._received_counter == total - 1:
            self._job_in_progress = False
            self._jobs_completed += 1
            record_job_completed()
            log_with_context(
                logger,
                logging.INFO,
                f"Completed a job with Total={total}",
                total=total,
                received_counter=self._received_counter,
            )
            return Metric.now(JOB_RECEIVED, count=total)

        return None

    def _discard(self, outcome: str, exc: Exception) -> None:
        record_delivery(outcome)
        log_with_context(
            logger,
            logging.DEBUG,
            "Discarding message",
            reason=outcome,
            error_message=str(exc),
        )

    async def handle(self, raw: bytes) -> None:
        """Subscription handler for the data topic."""
        metric = self.observe(raw)
        if metric is not None:
            await self.transport.publish(self.config.metric_topic, metric.to_bytes())

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Serve jobs until ``shutdown_event`` is set."""
        await self.transport.subscribe(self.config.data_topic, self.handle)
        log_with_context(
            logger,
            logging.INFO,
            "Waiting for jobs",
            topic=self.config.data_topic,
        )
        await shutdown_event.wait()
        logger.info("Shutdown requested, consumer stopping")
