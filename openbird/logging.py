"""Logging configuration for openbird."""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import structlog

from openbird.config import get_config


def configure_logging(level: str | None = None) -> None:
    """Configure structured logging for openbird.

    Logs go to stderr so they never mix with streamed command output.

    Args:
        level: Level name overriding ``logging.level`` from config
    """
    config = get_config()
    log_level = getattr(logging, (level or config.logging.level).upper(), logging.INFO)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    if config.logging.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


@contextmanager
def bind_session(session_id: str, **extra: object) -> Iterator[None]:
    """Tag every log line emitted inside the block (and its task) with the session id."""
    with structlog.contextvars.bound_contextvars(session_id=session_id, **extra):
        yield


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (usually __name__)
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
