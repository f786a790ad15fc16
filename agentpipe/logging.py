"""Structlog configuration for the agentpipe CLI and embedding hosts."""

from __future__ import annotations

import logging
import logging.config
import sys

import structlog

from agentpipe.settings import settings


def _drop_wire_payload(
    logger: logging.Logger | None, name: str, event_dict: dict
) -> dict:
    """Truncate raw wire payloads attached to log events.

    Args:
        logger: Logging.Logger instance (unused by this processor).
        name: Logger name passed by structlog.
        event_dict: Structlog event dict to trim.
    """
    envelope = event_dict.get("envelope")
    if envelope is not None and not settings.debug_wire():
        text = str(envelope)
        if len(text) > 200:
            event_dict["envelope"] = text[:200] + "..."
    return event_dict


def configure_logging() -> None:
    """Configure structlog + stdlib logging using env-driven settings."""
    log_level_name = settings.log_level()
    log_level = getattr(logging, log_level_name, logging.INFO)
    log_format = settings.log_format()
    log_file = settings.log_file()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _drop_wire_payload,
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    # Logs go to stderr so stdout stays free for streamed agent output.
    handlers: dict = {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stderr,
        }
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": log_file,
            "encoding": "utf-8",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"()": lambda: formatter}},
            "handlers": handlers,
            "root": {"handlers": list(handlers), "level": log_level},
            "loggers": {
                "asyncio": {"level": logging.WARNING},
            },
        }
    )
