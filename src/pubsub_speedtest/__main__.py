"""
Entry point for speed test runs.

Usage:
    # Run the producer: publish one job and report its timing
    python -m pubsub_speedtest -o config.yaml

    # Run the consumer: confirm every job published on the subject
    python -m pubsub_speedtest -o config.yaml -s

    # Run both roles in one process without a broker
    python -m pubsub_speedtest -o config.yaml --loopback

    # Serve Prometheus metrics while running
    python -m pubsub_speedtest -s --metrics-port 8000

Exit codes:
    0   Job done, timed out or aborted (consumer: shut down cleanly)
    1   Transport failure
    2   Invalid configuration
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from config.config import DEFAULT_CONFIG_FILE, SpeedtestConfig, load_config
from core.errors.exceptions import ConfigError, TransportError
from core.logging import (
    generate_run_id,
    log_exception,
    log_startup,
    set_log_context,
    setup_logging,
)
from pubsub_speedtest.consumer import ConsumerDriver
from pubsub_speedtest.generators import Generator
from pubsub_speedtest.monitoring import start_metrics_server
from pubsub_speedtest.producer import JobResult, ProducerDriver
from pubsub_speedtest.scenarios import build_generator
from pubsub_speedtest.transport import KafkaTransport, LoopbackTransport, Transport

# __main__.py is at src/pubsub_speedtest/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

EXIT_OK = 0
EXIT_TRANSPORT_ERROR = 1
EXIT_CONFIG_ERROR = 2

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Measure end-to-end latency of a publish/subscribe fabric",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start the consumer first, then the producer
    python -m pubsub_speedtest -o config.yaml -s
    python -m pubsub_speedtest -o config.yaml

    # Single process, no broker
    python -m pubsub_speedtest --loopback
        """,
    )

    parser.add_argument(
        "-o",
        dest="config",
        type=Path,
        default=DEFAULT_CONFIG_FILE,
        help="Path to config file (default: config.yaml)",
    )

    parser.add_argument(
        "-s",
        dest="slave",
        action="store_true",
        help="Run as the consumer role (ignored with --loopback, which runs both roles)",
    )

    parser.add_argument(
        "--loopback",
        action="store_true",
        help="Run consumer and producer in one process over an in-memory transport",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Console log level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )

    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file logging",
    )

    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Serve Prometheus metrics on this port",
    )

    return parser.parse_args(argv)


def setup_signal_handlers(loop: asyncio.AbstractEventLoop, shutdown_event: asyncio.Event):
    """Set up signal handlers for graceful shutdown.

    First CTRL+C: Sets shutdown event - the producer reports an abort, the consumer stops.
    Second CTRL+C: Forces immediate shutdown by cancelling all tasks.
    Note: Signal handlers not supported on Windows - KeyboardInterrupt used instead."""

    def handle_signal(sig):
        logger.info(
            "Received signal, initiating graceful shutdown", extra={"signal": sig.name}
        )
        if not shutdown_event.is_set():
            shutdown_event.set()
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    if sys.platform == "win32":
        logger.debug(
            "Signal handlers not supported on Windows, using KeyboardInterrupt"
        )
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


async def run_producer(
    transport: Transport,
    config: SpeedtestConfig,
    generator: Generator,
    shutdown_event: asyncio.Event,
) -> JobResult:
    await transport.start()
    try:
        return await ProducerDriver(transport, config, generator).run(shutdown_event)
    finally:
        await transport.drain()


async def run_consumer(
    transport: Transport,
    config: SpeedtestConfig,
    shutdown_event: asyncio.Event,
) -> None:
    await transport.start()
    try:
        await ConsumerDriver(transport, config).run(shutdown_event)
    finally:
        await transport.drain()


async def run_loopback(
    config: SpeedtestConfig,
    generator: Generator,
    shutdown_event: asyncio.Event,
) -> JobResult:
    """Run both roles against one in-memory transport."""
    transport = LoopbackTransport()
    await transport.start()
    consumer_stop = asyncio.Event()
    consumer = ConsumerDriver(transport, config)
    consumer_task = asyncio.create_task(consumer.run(consumer_stop))
    try:
        # Let the consumer subscribe before the job starts
        await asyncio.sleep(0)
        return await ProducerDriver(transport, config, generator).run(shutdown_event)
    finally:
        consumer_stop.set()
        await consumer_task
        await transport.drain()


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")

    global logger
    args = parse_args(argv)

    if args.loopback:
        role = "loopback"
    elif args.slave:
        role = "consumer"
    else:
        role = "producer"

    json_logs = os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes")
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR", "logs"))
    log_to_stdout = args.log_to_stdout or os.getenv(
        "LOG_TO_STDOUT", "false"
    ).lower() in ("true", "1", "yes")

    logger = setup_logging(
        name="pubsub_speedtest",
        role=role,
        log_dir=log_dir,
        json_format=json_logs,
        console_level=getattr(logging, args.log_level),
        log_to_stdout=log_to_stdout,
    )
    set_log_context(run_id=generate_run_id())

    try:
        config = load_config(args.config)
        generator = None if role == "consumer" else build_generator(config)
    except ConfigError as e:
        log_exception(logger, e, "Invalid configuration", include_traceback=False)
        return EXIT_CONFIG_ERROR

    set_log_context(subject=config.subject, job_total=config.total)
    log_startup(
        logger,
        role,
        "in-process" if args.loopback else config.bootstrap_servers,
        subscribe_topic=config.data_topic if role == "consumer" else config.metric_topic,
        publish_topic=config.metric_topic if role == "consumer" else config.data_topic,
        extra_config={"Scenario": config.scenario, "Total": config.total},
    )

    if args.metrics_port is not None:
        actual_port = start_metrics_server(args.metrics_port)
        logger.info("Metrics server started", extra={"port": actual_port})

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    shutdown_event = asyncio.Event()
    setup_signal_handlers(loop, shutdown_event)

    try:
        if args.loopback:
            loop.run_until_complete(run_loopback(config, generator, shutdown_event))
        elif role == "consumer":
            loop.run_until_complete(
                run_consumer(KafkaTransport(config), config, shutdown_event)
            )
        else:
            loop.run_until_complete(
                run_producer(KafkaTransport(config), config, generator, shutdown_event)
            )
    except TransportError as e:
        log_exception(logger, e, "Transport failure")
        return EXIT_TRANSPORT_ERROR
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    finally:
        loop.close()
        logger.info("Speed test shutdown complete")

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
