"""Structured logging for ar-sync runs.

Two streams come out of a run. The operator log (``ProgressTracker``) is
printed to stdout by the CLI; the structlog stream configured here goes to
stderr so both can be redirected separately.
"""

import logging
import sys
from typing import Literal

import structlog

from ar_sync.config.settings import get_settings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]

# httpx logs every request at INFO, one line per payment fetched
NOISY_LOGGERS = ("httpx", "httpcore")


def _renderer(log_format: LogFormat) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(level: LogLevel | None = None, format: LogFormat | None = None) -> None:
    """Route structlog through stdlib logging on stderr.

    Args:
        level: Minimum level. Defaults to ``LOG_LEVEL``.
        format: ``json`` for machine-readable runs, ``console`` otherwise.
            Defaults to ``LOG_FORMAT``.
    """
    settings = get_settings()
    log_level = getattr(logging, level or settings.log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(format or settings.log_format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **context: object) -> structlog.stdlib.BoundLogger:
    """Logger for ``name`` with ``context`` (e.g. ``component``) already bound."""
    return structlog.get_logger(name).bind(**context)
