"""
Prometheus metrics for speed test runs.

- Messages published per topic
- Data-topic deliveries observed by the consumer, by outcome
- Completed jobs and producer job outcomes
- Job duration as measured by the producer

Served by the CLI when ``--metrics-port`` is given.
"""

import errno
import socket

from prometheus_client import REGISTRY, Counter, Histogram, start_http_server

from core.logging import get_logger

logger = get_logger(__name__)

# Delivery outcomes recorded by the consumer
OUTCOME_ACCEPTED = "accepted"
OUTCOME_MALFORMED = "malformed"
OUTCOME_DECRYPT_FAILED = "decrypt_failed"
OUTCOME_DESERIALIZE_FAILED = "deserialize_failed"
OUTCOME_SENTINEL = "sentinel"

messages_published_counter = Counter(
    "speedtest_messages_published_total",
    "Total number of messages published",
    labelnames=["topic"],
)

deliveries_observed_counter = Counter(
    "speedtest_deliveries_observed_total",
    "Data-topic deliveries observed by the consumer, by decode outcome",
    labelnames=["outcome"],
)

jobs_completed_counter = Counter(
    "speedtest_jobs_completed_total",
    "Jobs the consumer declared complete",
)

job_outcomes_counter = Counter(
    "speedtest_job_outcomes_total",
    "Producer job results by terminal outcome",
    labelnames=["outcome"],
)

job_duration_seconds = Histogram(
    "speedtest_job_duration_seconds",
    "Time from the producer's start marker to the consumer's completion signal",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)


def record_published(topic: str, count: int = 1) -> None:
    messages_published_counter.labels(topic=topic).inc(count)


def record_delivery(outcome: str) -> None:
    deliveries_observed_counter.labels(outcome=outcome).inc()


def record_job_completed() -> None:
    jobs_completed_counter.inc()


def record_job_outcome(outcome: str, duration_seconds: float | None = None) -> None:
    job_outcomes_counter.labels(outcome=outcome).inc()
    if duration_seconds is not None:
        job_duration_seconds.observe(duration_seconds)


def start_metrics_server(preferred_port: int) -> int:
    """Start the Prometheus HTTP server, falling back to a free port if taken.

    Returns the port the server listens on.
    """
    try:
        start_http_server(preferred_port, registry=REGISTRY)
        return preferred_port
    except OSError as e:
        if e.errno != errno.EADDRINUSE:
            raise
        logger.info(
            "Port already in use, finding available port",
            extra={"preferred_port": preferred_port},
        )
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            s.listen(1)
            available_port = s.getsockname()[1]
        start_http_server(available_port, registry=REGISTRY)
        return available_port
