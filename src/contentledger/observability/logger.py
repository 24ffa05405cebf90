"""
Structured JSON logging for contentledger

Every stage logs through the ``contentledger`` logger hierarchy so a run can
be diffed against the previous one with plain JSON tooling. Stdout is left to
the operator summary tables printed by the CLIs.
"""
import logging
import os
import sys
import time
from datetime import datetime, timezone

from pythonjsonlogger import jsonlogger

DEFAULT_LOGGER_NAME = "contentledger"

JSON_FIELDS = "%(timestamp)s %(level)s %(logger)s %(module)s %(function)s %(message)s"
TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter stamping UTC time, upper-case level, logger, call site and pid
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            )
        log_record["level"] = (log_record.get("level") or record.levelname).upper()
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        # matches the pid written into the lock file
        log_record["process_id"] = record.process


def _formatter(format_type: str) -> logging.Formatter:
    if format_type == "text":
        return logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    return CustomJsonFormatter(fmt=JSON_FIELDS)


def setup_logger(
    name: str = DEFAULT_LOGGER_NAME,
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Logger:
    """
    Attach a single stderr handler to ``name``

    Args:
        name: Logger name
        level: Level name; defaults to $LOG_LEVEL, then INFO
        format_type: "json" or "text"; defaults to $LOG_FORMAT, then "json"

    Returns:
        The configured logger
    """
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter((format_type or os.getenv("LOG_FORMAT") or "json").lower()))

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers[:] = [handler]
    logger.propagate = False
    return logger


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Get a logger under the ``contentledger`` hierarchy

    Names outside the hierarchy are prefixed, so ``get_logger("consolidator")``
    is ``contentledger.consolidator``. The package logger is configured on
    first use.
    """
    if name != DEFAULT_LOGGER_NAME and not name.startswith(DEFAULT_LOGGER_NAME + "."):
        name = f"{DEFAULT_LOGGER_NAME}.{name}"

    if not logging.getLogger(DEFAULT_LOGGER_NAME).handlers:
        setup_logger(DEFAULT_LOGGER_NAME)
    return logging.getLogger(name)


class log_operation:
    """
    Log the start, outcome and wall time of a stage

    Usage:
        with log_operation("Stage consolidating", logger=logger, stage="consolidating") as op:
            ...
        metrics.observe_histogram(..., op.elapsed)
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **extra_fields):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.fields = {"operation": operation_name, **extra_fields}
        self.started: float | None = None
        self.finished: float | None = None

    @property
    def elapsed(self) -> float:
        if self.started is None:
            return 0.0
        return (self.finished or time.monotonic()) - self.started

    def __enter__(self):
        self.started = time.monotonic()
        self.logger.info(f"Starting: {self.operation_name}", extra=self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finished = time.monotonic()
        fields = {**self.fields, "duration_seconds": round(self.elapsed, 3)}

        if exc_type is None:
            self.logger.info(f"Completed: {self.operation_name}", extra={**fields, "status": "success"})
        else:
            self.logger.error(
                f"Failed: {self.operation_name}",
                extra={
                    **fields,
                    "status": "error",
                    "error_type": exc_type.__name__,
                    "error_message": str(exc_val),
                },
            )
        return False
