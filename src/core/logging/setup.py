"""Logging setup and configuration."""

import io
import logging
import secrets
import shutil
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

# Default settings
DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiokafka",
    "kafka",
]


class ArchivingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """
    TimedRotatingFileHandler that moves rotated files to an archive folder.

    Example:
        Before rotation:
            logs/producer/2026-10-19/producer_1019_1430.log

        After rotation (daily at midnight):
            logs/producer/2026-10-19/producer_1019_1430.log (new file)
            logs/producer/2026-10-19/archive/producer_1019_1430.log.2026-10-19
    """

    def __init__(
        self,
        filename,
        when=DEFAULT_ROTATION_WHEN,
        interval=DEFAULT_ROTATION_INTERVAL,
        backupCount=DEFAULT_BACKUP_COUNT,
        encoding=None,
        delay=False,
        utc=False,
        archive_dir=None,
    ):
        super().__init__(filename, when, interval, backupCount, encoding, delay, utc)
        if archive_dir:
            self.archive_dir = Path(archive_dir)
        else:
            self.archive_dir = Path(self.baseFilename).parent / "archive"

        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def doRollover(self):
        super().doRollover()

        log_path = Path(self.baseFilename)
        for rotated_file in log_path.parent.glob(f"{log_path.name}.*"):
            if rotated_file == log_path:
                continue
            try:
                shutil.move(str(rotated_file), str(self.archive_dir / rotated_file.name))
            except OSError as e:
                # Logging from a handler would recurse
                print(f"Warning: Failed to archive {rotated_file}: {e}", file=sys.stderr)


def get_log_file_path(log_dir: Path, role: str | None = None) -> Path:
    """
    Build log file path with role/date subfolder structure.

    Structure: {log_dir}/{role}/{YYYY-MM-DD}/{role}_{MMDD}_{HHMM}.log

    Examples:
        logs/producer/2026-10-19/producer_1019_1430.log
        logs/consumer/2026-10-19/consumer_1019_0930.log
    """
    now = datetime.now()
    role = role or "speedtest"
    filename = f"{role}_{now.strftime('%m%d')}_{now.strftime('%H%M')}.log"
    return log_dir / role / now.strftime("%Y-%m-%d") / filename


def setup_logging(
    name: str = "speedtest",
    role: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    suppress_noisy: bool = True,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Configure logging with a console handler and an archiving file handler.

    Args:
        name: Logger name returned to the caller
        role: Role name ("producer", "consumer", "loopback") for context and file path
        log_dir: Directory for log files (default: ./logs)
        json_format: Use JSON format for file logs (default: True)
        console_level: Console handler level (default: INFO)
        file_level: File handler level (default: DEBUG)
        suppress_noisy: Quiet down Kafka client loggers
        log_to_stdout: Send all log output to stdout only, skipping file handlers.
            Useful for containerized deployments where logs are captured from stdout.

    Returns:
        Configured logger instance
    """
    log_dir = log_dir or DEFAULT_LOG_DIR

    if role:
        set_log_context(role=role)

    console_formatter = ConsoleFormatter()
    if sys.platform == "win32":
        safe_stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
        console_handler = logging.StreamHandler(safe_stdout)
    else:
        console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()

    if log_to_stdout:
        console_handler.setLevel(min(console_level, file_level))
        root_logger.addHandler(console_handler)
    else:
        console_handler.setLevel(console_level)
        root_logger.addHandler(console_handler)

        log_file = get_log_file_path(log_dir, role=role)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        if json_format:
            file_formatter = JSONFormatter()
        else:
            file_formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )

        file_handler = ArchivingTimedRotatingFileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        "Logging initialized",
        extra={"role": role, "log_to_stdout": log_to_stdout},
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Use this instead of logging.getLogger() to ensure consistent naming.
    """
    return logging.getLogger(name)


def log_startup(
    logger: logging.Logger,
    role: str,
    bootstrap_servers: str,
    subscribe_topic: str | None = None,
    publish_topic: str | None = None,
    extra_config: dict | None = None,
) -> None:
    """
    Log standard startup information including the transport configuration.

    Args:
        logger: Logger instance to use
        role: Role starting up
        bootstrap_servers: Kafka bootstrap servers
        subscribe_topic: Topic the role listens on
        publish_topic: Topic the role publishes to
        extra_config: Additional configuration to log
    """
    logger.info("=" * 70)
    logger.info("Starting %s", role)
    logger.info("=" * 70)
    logger.info("Kafka bootstrap servers: %s", bootstrap_servers)

    if subscribe_topic:
        logger.info("Subscribe topic: %s", subscribe_topic)
    if publish_topic:
        logger.info("Publish topic: %s", publish_topic)

    if extra_config:
        for key, value in extra_config.items():
            logger.info("%s: %s", key, value)

    logger.info("=" * 70)


def generate_run_id() -> str:
    """
    Generate unique run identifier.

    Format: r-YYYYMMDD-HHMMSS-XXXX where XXXX is random hex.
    """
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    suffix = secrets.token_hex(2)
    return f"r-{ts}-{suffix}"
