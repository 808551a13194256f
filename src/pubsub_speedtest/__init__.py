"""
Publish/subscribe speed test.

A producer publishes a job of numbered messages on ``<subject>.data``; a
consumer confirms the job on ``<subject>.metric`` once every message has been
observed, and the producer reports throughput and per-message latency.

Modules:
    codec       Wire layout of raw messages
    generators  Composable message generators
    scenarios   Scenario name to generator mapping
    metric      Control-plane metric
    transport   Kafka and in-process transports
    producer    Producer role
    consumer    Consumer role
    monitoring  Prometheus metrics
"""

from core import __version__

__all__ = ["__version__"]
