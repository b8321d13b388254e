"""
Logging configuration for partition-peek.

Diagnostics go to stderr so that stdout carries only the peeked events.

Environment Variables:
    PARTITION_PEEK_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR - default: WARNING
    PARTITION_PEEK_LOG_FORMAT: text, json - default: text
"""

from __future__ import annotations

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from partition_peek.common import env_str

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class PartitionFilter(logging.Filter):
    """Make sure every record carries a ``partition`` field for the formatters."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "partition"):
            record.partition = "-"
        return True


def setup_logging(*, level: str | None = None) -> None:
    log_level = (level or env_str("PARTITION_PEEK_LOG_LEVEL", default="WARNING")).upper()
    log_format = env_str("PARTITION_PEEK_LOG_FORMAT", default="text").lower()

    root_logger = logging.getLogger()
    root_logger.setLevel(_LEVELS.get(log_level, logging.WARNING))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(PartitionFilter())
    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s %(partition)s",
            rename_fields={"asctime": "timestamp", "name": "logger", "levelname": "level"},
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s [partition=%(partition)s]",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # librdkafka logs through its own callbacks; keep the python side quiet
    logging.getLogger("confluent_kafka").setLevel(logging.WARNING)


def get_logger(name: str, *, partition: str | None = None) -> logging.LoggerAdapter:
    logger = logging.getLogger(name)
    return logging.LoggerAdapter(logger, {"partition": partition or "-"})
