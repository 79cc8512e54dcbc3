"""Structured logging for AI Fingerprint.

structlog is configured once per process. Events are written to stderr so
command output on stdout stays machine-readable, and every event is
scrubbed of secret-shaped values before it is rendered.
"""
# ruff: noqa: ARG001  # Processor signatures required by structlog API

import logging
import sys
from typing import Any, Literal, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from fingerprint.config.settings import get_settings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Libraries that log request details below WARNING
_QUIET_LOGGERS = ("hvac", "httpx", "httpcore", "urllib3", "web3")

# Processor bookkeeping that must reach the renderer untouched
_INTERNAL_KEYS = ("exc_info", "stack_info")


def add_environment_info(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Tag every event with the deployment environment."""
    event_dict["environment"] = get_settings().environment.value
    return event_dict


def redact_event(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Replace sensitive fields and secret-shaped strings in an event."""
    # Imported here: the audit package logs through this module
    from fingerprint.audit.redaction import sanitize_for_log

    fields = {
        k: v for k, v in event_dict.items() if not k.startswith("_") and k not in _INTERNAL_KEYS
    }
    event_dict.update(sanitize_for_log(fields))
    return event_dict


def _shared_processors(add_timestamp: bool, json_format: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_environment_info,
        structlog.processors.StackInfoRenderer(),
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))
    if json_format:
        processors.append(structlog.processors.format_exc_info)
    processors.append(redact_event)
    return processors


def setup_logging(
    log_level: LogLevel | None = None,
    json_format: bool | None = None,
    add_timestamp: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and route standard library logging through it.

    Args:
        log_level: Override log level (default from settings)
        json_format: Use JSON output (default: True in production, False elsewhere)
        add_timestamp: Include an ISO timestamp in log entries
        stream: Output stream (default: stderr)
    """
    settings = get_settings()
    stream = stream or sys.stderr
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    use_json = settings.is_production if json_format is None else json_format

    shared = _shared_processors(add_timestamp, use_json)
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=stream.isatty())
    )

    structlog.configure(
        processors=[*shared, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[structlog.stdlib.add_logger_name, *shared],
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, conventionally ``get_logger(__name__)``."""
    return structlog.get_logger(name)


class LogContext:
    """Bind values to every log event emitted inside a block.

    Example:
        with LogContext(command="rotate", key_type="wallet"):
            logger.info("cli_command_started")
    """

    def __init__(self, **values: Any):
        self.values = values

    def __enter__(self) -> "LogContext":
        structlog.contextvars.bind_contextvars(**self.values)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        structlog.contextvars.unbind_contextvars(*self.values)
