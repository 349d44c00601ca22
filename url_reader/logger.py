"""Logging configuration for url-reader.

Supports two logging formats:
- JSON logging (production): Structured logs for log aggregation systems
- Standard logging (development): Human-readable logs with stacktraces

Modules log through structlog; setup_logging() routes those events through
the standard library logging handlers configured here.
"""

import logging
import sys

import structlog
from pythonjsonlogger.json import JsonFormatter

from url_reader.config import Settings


class CustomJsonFormatter(JsonFormatter):
    """JSON formatter with consistent field names."""

    def add_fields(
        self,
        log_record: dict[str, object],
        record: logging.LogRecord,
        message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["message"] = record.getMessage()

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


def setup_logger(logger: logging.Logger, settings: Settings) -> logging.Logger:
    """Setup a specific logger with JSON or plain formatting."""
    formatter: logging.Formatter
    if settings.log_format_json:
        formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(logger)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    logger.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(settings.log_level.upper())
    return logger


def setup_logging(settings: Settings | None = None) -> logging.Logger:
    """Configure and return the url_reader logger.

    Configures the root logger so library loggers (httpx, etc.) share the
    format, routes structlog events through it and quiets the loggers listed
    in ``log_exclude_loggers`` to WARNING.

    Returns:
        Logger for url_reader
    """
    settings = settings or Settings()
    setup_logger(logging.getLogger(), settings)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    for name in settings.log_exclude_loggers.split(","):
        if name.strip():
            logging.getLogger(name.strip()).setLevel(logging.WARNING)

    return logging.getLogger("url_reader")
