"""
Structured JSON logging for forcam-ingest

All loggers live under the "forcam_ingest" namespace. With the json format
each record is one object per line: state transitions, retries and batch
results can be filtered by their "event" field downstream.
"""
import logging
import os
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager

from pythonjsonlogger import jsonlogger

ROOT_LOGGER_NAME = "forcam_ingest"

JSON_FIELDS = "%(timestamp)s %(level)s %(logger)s %(module)s %(function)s %(message)s"
TEXT_FIELDS = "%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s"

_format_type = os.getenv("LOG_FORMAT", "json")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter for pipeline records

    Adds timestamp, upper-case level, logger, call site, process id and
    thread name. File workers are threads, so the thread name is what
    separates their interleaved lines.
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault("timestamp", None)
        if not log_record["timestamp"]:
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        level = log_record.get("level") or record.levelname
        log_record["level"] = level.upper()
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        log_record["process_id"] = record.process
        log_record["thread"] = record.threadName


def _build_formatter(format_type: str) -> logging.Formatter:
    if format_type == "json":
        return CustomJsonFormatter(fmt=JSON_FIELDS, datefmt="%Y-%m-%dT%H:%M:%S")
    return logging.Formatter(fmt=TEXT_FIELDS, datefmt="%Y-%m-%d %H:%M:%S")


def _level(name: str | None) -> int:
    level = logging.getLevelName((name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Logger:
    """
    Attach a single stdout handler to a logger

    Args:
        name: Logger name
        level: Level name; falls back to LOG_LEVEL, then INFO
        format_type: "json" or "text"; falls back to the configured format

    Returns:
        The configured logger
    """
    log_level = _level(level or os.getenv("LOG_LEVEL"))

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(_build_formatter(format_type or _format_type))

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def configure_logging(level: str = "INFO", format_type: str = "json") -> None:
    """
    Apply the level and format from the settings file

    Loggers already created through get_logger at import time are rebuilt
    so the settings win over the environment defaults.
    """
    global _format_type
    _format_type = format_type
    os.environ["LOG_LEVEL"] = level.upper()

    prefix = ROOT_LOGGER_NAME + "."
    for name in list(logging.Logger.manager.loggerDict):
        if name != ROOT_LOGGER_NAME and not name.startswith(prefix):
            continue
        if logging.getLogger(name).handlers:
            setup_logger(name, level=level, format_type=format_type)


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Return a configured logger, setting it up on first use."""
    logger = logging.getLogger(name)
    return logger if logger.handlers else setup_logger(name)


@contextmanager
def log_operation(operation_name: str, logger: logging.Logger | None = None, **fields) -> Iterator[None]:
    """
    Log the start, end and duration of an operation

    Usage:
        with log_operation("API endpoint ingestion", logger=logger, endpoint="/api/v1/cycles"):
            ingestor.run_endpoint(endpoint)

    Exceptions are logged with their type and re-raised.
    """
    logger = logger or get_logger()
    logger.info(f"Starting: {operation_name}", extra={"operation": operation_name, **fields})
    started = time.monotonic()
    try:
        yield
    except BaseException as e:
        logger.error(
            f"Failed: {operation_name}",
            extra={
                "operation": operation_name,
                "duration_seconds": round(time.monotonic() - started, 3),
                "status": "error",
                "error_type": type(e).__name__,
                "error_message": str(e),
                **fields,
            },
            exc_info=True,
        )
        raise
    logger.info(
        f"Completed: {operation_name}",
        extra={
            "operation": operation_name,
            "duration_seconds": round(time.monotonic() - started, 3),
            "status": "success",
            **fields,
        },
    )
