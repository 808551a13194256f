"""
Producer role.

Publishes one job of ``total`` numbered messages on ``<subject>.data`` and
waits for the consumer's ``received`` metric on ``<subject>.metric``.

The publish burst runs concurrently with three watchers; the first of them
to fire decides the outcome:

- completion metric arrives  -> DONE
- timeout elapses            -> TIMED_OUT
- shutdown event is set      -> ABORTED

Duration is measured from the local start marker to the timestamp the
consumer put in its metric, so clock skew between the two hosts shows up
directly in the result.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

from config.config import SpeedtestConfig
from core.errors.exceptions import DeserializeError, TransportError, wrap_exception
from core.logging import get_logger, log_with_context, to_ms
from pubsub_speedtest.codec import decode_format, decode_kind
from pubsub_speedtest.generators import Generator
from pubsub_speedtest.metric import JOB_BASE, JOB_RECEIVED, Metric
from pubsub_speedtest.monitoring import record_job_outcome
from pubsub_speedtest.transport import Transport

logger = get_logger(__name__)


class Outcome(str, Enum):
    DONE = "done"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


@dataclass(frozen=True)
class JobSummary:
    """Observations reported for a completed job."""

    kind: str
    fmt: str
    message_size: int
    generation_time: timedelta
    duration: timedelta
    total: int

    @property
    def duration_per_message(self) -> timedelta:
        return self.duration / self.total


@dataclass(frozen=True)
class JobResult:
    outcome: Outcome
    total: int
    duration: Optional[timedelta] = None
    summary: Optional[JobSummary] = None


class ProducerDriver:
    """
    Runs a single job for the producer role.

    Usage:
        >>> driver = ProducerDriver(transport, config, build_generator(config))
        >>> result = await driver.run(shutdown_event)
        >>> result.outcome
        <Outcome.DONE: 'done'>
    """

    def __init__(self, transport: Transport, config: SpeedtestConfig, generator: Generator):
        self.transport = transport
        self.config = config
        self.generator = generator

    async def run(self, shutdown_event: Optional[asyncio.Event] = None) -> JobResult:
        """
        Publish the job and wait for its outcome.

        The transport is not drained here; the caller owns it.

        Raises:
            TransportError: If the publish burst fails before an outcome is reached
        """
        total = self.config.total
        if shutdown_event is None:
            shutdown_event = asyncio.Event()

        loop = asyncio.get_running_loop()
        completion: asyncio.Future = loop.create_future()

        async def on_metric(raw: bytes) -> None:
            try:
                metric = Metric.from_bytes(raw)
            except DeserializeError as e:
                log_with_context(
                    logger,
                    logging.DEBUG,
                    "Ignoring invalid metric",
                    error_message=str(e),
                )
                return
            if metric.job == JOB_RECEIVED and metric.count == total and not completion.done():
                completion.set_result(metric)

        await self.transport.subscribe(self.config.metric_topic, on_metric)

        base = Metric.now(JOB_BASE, count=total)
        log_with_context(
            logger,
            logging.INFO,
            "Publishing job",
            total=total,
            scenario=self.config.scenario,
            timeout_seconds=self.config.timeout_seconds,
            topic=self.config.data_topic,
        )

        burst = asyncio.create_task(self._publish_burst(total), name="publish-burst")
        deadline = asyncio.create_task(asyncio.sleep(self.config.timeout_seconds), name="deadline")
        interrupt = asyncio.create_task(shutdown_event.wait(), name="interrupt")
        pending = {completion, burst, deadline, interrupt}

        try:
            while True:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)

                if completion in done:
                    metric = completion.result()
                    return self._done(total, metric.time - base.time)
                if deadline in done:
                    logger.info("Timeout! For longer timeout - Change the settings in config file!")
                    record_job_outcome(Outcome.TIMED_OUT.value)
                    return JobResult(outcome=Outcome.TIMED_OUT, total=total)
                if interrupt in done:
                    logger.info("User abort.")
                    record_job_outcome(Outcome.ABORTED.value)
                    return JobResult(outcome=Outcome.ABORTED, total=total)

                # Only the burst finished; keep waiting unless it failed
                exc = burst.exception()
                if exc is not None:
                    raise wrap_exception(
                        exc,
                        default_class=TransportError,
                        context={"topic": self.config.data_topic},
                    )
                log_with_context(
                    logger,
                    logging.DEBUG,
                    "All messages published, waiting for completion",
                    total=total,
                )
        finally:
            for task in (burst, deadline, interrupt):
                task.cancel()
            if not completion.done():
                completion.cancel()
            await asyncio.gather(burst, deadline, interrupt, return_exceptions=True)

    async def _publish_burst(self, total: int) -> None:
        topic = self.config.data_topic
        for count in range(total):
            await self.transport.publish(topic, self.generator(count, total))
        await self.transport.flush()

    def _done(self, total: int, duration: timedelta) -> JobResult:
        # Measure one representative message outside the timed window
        started = time.perf_counter()
        sample = self.generator(1, 1)
        generation_time = timedelta(seconds=time.perf_counter() - started)

        summary = JobSummary(
            kind=decode_kind(sample),
            fmt=decode_format(sample),
            message_size=len(sample),
            generation_time=generation_time,
            duration=duration,
            total=total,
        )
        record_job_outcome(Outcome.DONE.value, duration.total_seconds())
        log_summary(summary)
        return JobResult(outcome=Outcome.DONE, total=total, duration=duration, summary=summary)


def log_summary(summary: JobSummary) -> None:
    """Log the summary of a completed job, one observation per line."""
    log_with_context(
        logger,
        logging.INFO,
        "All messages sent & summary message received.",
        total=summary.total,
        kind=summary.kind,
        format=summary.fmt,
        message_size=summary.message_size,
        generation_ms=to_ms(summary.generation_time),
        duration_ms=to_ms(summary.duration),
        duration_per_message_ms=to_ms(summary.duration_per_message),
    )
    logger.info("Mode=%s/%s", summary.kind, summary.fmt)
    logger.info("Message size=%d (byte)", summary.message_size)
    logger.info("Message generation=%s", summary.generation_time)
    logger.info("Total duration=%s", summary.duration)
    logger.info("Total Messages=%d", summary.total)
    logger.info("Duration/Message=%s", summary.duration_per_message)
