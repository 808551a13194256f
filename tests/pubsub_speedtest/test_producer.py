"""Tests for the producer role's job race."""

import asyncio
from datetime import timedelta

import pytest
from prometheus_client import REGISTRY

from core.errors.exceptions import TransportError
from pubsub_speedtest.codec import HEADER_SIZE, decode_message
from pubsub_speedtest.consumer import ConsumerDriver
from pubsub_speedtest.generators import BaseBytes, Framed, Generator
from pubsub_speedtest.metric import JOB_RECEIVED, Metric
from pubsub_speedtest.producer import JobSummary, Outcome, ProducerDriver, log_summary
from pubsub_speedtest.scenarios import build_generator
from pubsub_speedtest.transport import LoopbackTransport


def job_outcomes(outcome):
    return REGISTRY.get_sample_value("speedtest_job_outcomes_total", {"outcome": outcome}) or 0.0


class FailingTransport(LoopbackTransport):
    """Loopback transport whose data publishes start failing after a few messages."""

    def __init__(self, fail_after: int):
        super().__init__()
        self.fail_after = fail_after
        self.published = 0

    async def publish(self, topic, value):
        if topic.endswith(".data"):
            if self.published >= self.fail_after:
                raise TransportError("broker went away")
            self.published += 1
        await super().publish(topic, value)


class ExplodingGenerator(Generator):
    def generate(self, count, total):
        raise RuntimeError("generator bug")


@pytest.fixture
def transport():
    return LoopbackTransport()


class TestProducerDriver:

    @pytest.mark.asyncio
    async def test_end_to_end_emptybytes(self, transport, speedtest_config):
        speedtest_config.total = 1000
        speedtest_config.num_bytes = 16000
        consumer = ConsumerDriver(transport, speedtest_config)
        await transport.subscribe(speedtest_config.data_topic, consumer.handle)
        generator = build_generator(speedtest_config)
        before = job_outcomes("done")

        result = await ProducerDriver(transport, speedtest_config, generator).run()
        await transport.drain()

        assert result.outcome == Outcome.DONE
        assert result.total == 1000
        assert result.duration > timedelta(0)
        assert consumer.jobs_completed == 1
        summary = result.summary
        assert summary.kind == "byte"
        assert summary.fmt == "byte"
        assert summary.message_size == HEADER_SIZE + 16 + 16000
        assert summary.duration == result.duration
        assert summary.duration_per_message == result.duration / 1000
        assert summary.generation_time >= timedelta(0)
        assert job_outcomes("done") == before + 1

    @pytest.mark.asyncio
    async def test_publishes_every_message_in_order(self, transport, speedtest_config):
        seen = []

        async def collect(raw):
            message = decode_message(raw)
            seen.append((message.count, message.total))

        await transport.subscribe(speedtest_config.data_topic, collect)
        speedtest_config.timeout_seconds = 0.2

        await ProducerDriver(transport, speedtest_config, build_generator(speedtest_config)).run()
        await transport.drain()

        assert seen == [(i, 5) for i in range(5)]

    @pytest.mark.asyncio
    async def test_encrypted_end_to_end(self, transport, speedtest_config):
        speedtest_config.scenario = "json.encrypted"
        consumer = ConsumerDriver(transport, speedtest_config)
        await transport.subscribe(speedtest_config.data_topic, consumer.handle)

        result = await ProducerDriver(
            transport, speedtest_config, build_generator(speedtest_config)
        ).run()
        await transport.drain()

        assert result.outcome == Outcome.DONE
        assert (result.summary.kind, result.summary.fmt) == ("json", "encr")

    @pytest.mark.asyncio
    async def test_timeout_without_consumer(self, transport, speedtest_config):
        speedtest_config.timeout_seconds = 0.05
        before = job_outcomes("timed_out")

        result = await ProducerDriver(
            transport, speedtest_config, build_generator(speedtest_config)
        ).run()
        await transport.drain()

        assert result.outcome == Outcome.TIMED_OUT
        assert result.duration is None
        assert result.summary is None
        assert job_outcomes("timed_out") == before + 1

    @pytest.mark.asyncio
    async def test_timeout_when_consumer_misses_a_message(self, speedtest_config):
        transport = LoopbackTransport()
        consumer = ConsumerDriver(transport, speedtest_config)

        async def lossy(raw):
            if decode_message(raw).count != 2:
                await consumer.handle(raw)

        await transport.subscribe(speedtest_config.data_topic, lossy)
        speedtest_config.timeout_seconds = 0.1

        result = await ProducerDriver(
            transport, speedtest_config, build_generator(speedtest_config)
        ).run()
        await transport.drain()

        assert result.outcome == Outcome.TIMED_OUT
        assert consumer.jobs_completed == 0

    @pytest.mark.asyncio
    async def test_abort_on_shutdown(self, transport, speedtest_config):
        speedtest_config.timeout_seconds = 30
        shutdown_event = asyncio.Event()
        before = job_outcomes("aborted")

        driver = ProducerDriver(transport, speedtest_config, build_generator(speedtest_config))
        task = asyncio.create_task(driver.run(shutdown_event))
        await asyncio.sleep(0.01)
        shutdown_event.set()
        result = await asyncio.wait_for(task, timeout=1)
        await transport.drain()

        assert result.outcome == Outcome.ABORTED
        assert job_outcomes("aborted") == before + 1

    @pytest.mark.asyncio
    async def test_already_set_shutdown_aborts(self, transport, speedtest_config):
        shutdown_event = asyncio.Event()
        shutdown_event.set()

        result = await ProducerDriver(
            transport, speedtest_config, build_generator(speedtest_config)
        ).run(shutdown_event)
        await transport.drain()

        assert result.outcome == Outcome.ABORTED

    @pytest.mark.asyncio
    async def test_ignores_unrelated_metrics(self, transport, speedtest_config):
        total = speedtest_config.total

        async def fake_consumer(raw):
            message = decode_message(raw)
            if message.count == total - 1:
                topic = speedtest_config.metric_topic
                await transport.publish(topic, b"not a metric")
                await transport.publish(topic, Metric.now(JOB_RECEIVED, count=total + 1).to_bytes())
                await transport.publish(topic, Metric.now("other", count=total).to_bytes())
                await transport.publish(topic, Metric.now(JOB_RECEIVED, count=total).to_bytes())

        await transport.subscribe(speedtest_config.data_topic, fake_consumer)

        result = await ProducerDriver(
            transport, speedtest_config, build_generator(speedtest_config)
        ).run()
        await transport.drain()

        assert result.outcome == Outcome.DONE

    @pytest.mark.asyncio
    async def test_wrong_count_metric_times_out(self, transport, speedtest_config):
        speedtest_config.timeout_seconds = 0.1

        async def fake_consumer(raw):
            await transport.publish(
                speedtest_config.metric_topic,
                Metric.now(JOB_RECEIVED, count=speedtest_config.total - 1).to_bytes(),
            )

        await transport.subscribe(speedtest_config.data_topic, fake_consumer)

        result = await ProducerDriver(
            transport, speedtest_config, build_generator(speedtest_config)
        ).run()
        await transport.drain()

        assert result.outcome == Outcome.TIMED_OUT

    @pytest.mark.asyncio
    async def test_publish_failure_raises(self, speedtest_config):
        transport = FailingTransport(fail_after=2)

        with pytest.raises(TransportError, match="broker went away"):
            await ProducerDriver(
                transport, speedtest_config, build_generator(speedtest_config)
            ).run()
        await transport.drain()

        assert transport.published == 2

    @pytest.mark.asyncio
    async def test_generator_failure_is_wrapped(self, transport, speedtest_config):
        with pytest.raises(TransportError, match="generator bug") as exc_info:
            await ProducerDriver(transport, speedtest_config, ExplodingGenerator()).run()
        await transport.drain()

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert exc_info.value.context == {
            "topic": "speedtest-test.data",
            "error_type": "RuntimeError",
        }

    @pytest.mark.asyncio
    async def test_no_tasks_left_behind(self, transport, speedtest_config):
        speedtest_config.timeout_seconds = 0.05
        before = asyncio.all_tasks()

        await ProducerDriver(transport, speedtest_config, build_generator(speedtest_config)).run()

        leftover = {t for t in asyncio.all_tasks() - before if not t.get_name().startswith("loopback:")}
        assert leftover == set()
        await transport.drain()


class TestJobSummary:

    def test_duration_per_message(self):
        summary = JobSummary(
            kind="byte",
            fmt="byte",
            message_size=16024,
            generation_time=timedelta(microseconds=5),
            duration=timedelta(seconds=2),
            total=1000,
        )

        assert summary.duration_per_message == timedelta(milliseconds=2)

    def test_log_summary(self, caplog):
        summary = JobSummary(
            kind="json",
            fmt="encr",
            message_size=900,
            generation_time=timedelta(microseconds=50),
            duration=timedelta(seconds=1),
            total=10,
        )

        with caplog.at_level("INFO", logger="pubsub_speedtest.producer"):
            log_summary(summary)

        text = caplog.text
        assert "All messages sent & summary message received." in text
        assert "Mode=json/encr" in text
        assert "Message size=900 (byte)" in text
        assert "Total Messages=10" in text
        assert "Duration/Message=0:00:00.100000" in text


class TestGeneratorSample:

    def test_sample_is_measured_with_single_message_job(self):
        calls = []

        class Recording(Generator):
            def generate(self, count, total):
                calls.append((count, total))
                return Framed("byte", "byte", BaseBytes(b""))(count, total)

        driver = ProducerDriver(LoopbackTransport(), None, Recording())
        result = driver._done(4, timedelta(seconds=1))

        assert calls == [(1, 1)]
        assert result.outcome == Outcome.DONE
        assert result.summary.message_size == HEADER_SIZE + 16
