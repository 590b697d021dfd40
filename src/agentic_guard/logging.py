"""Structured logging configuration for agentic-guard.

Uses structlog so that filtering decisions, audit sink failures and
background maintenance produce key/value events that can be rendered for
a developer console or shipped as JSON to a log pipeline.
"""

import logging
import sys
from typing import TYPE_CHECKING

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from agentic_guard.config import GuardSettings


def configure_logging(settings: "GuardSettings | None" = None) -> None:
    """Configure structured logging based on settings.

    Args:
        settings: Guard settings. If None, uses defaults.
    """
    log_level = logging.WARNING
    log_format = "console"

    if settings is not None:
        log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
        log_format = settings.log_format

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name) if name else structlog.get_logger()


class Loggers:
    """Pre-configured logger instances for agentic-guard components."""

    @staticmethod
    def filtering() -> structlog.stdlib.BoundLogger:
        """Logger for the filtering pipeline and its layers."""
        return get_logger("agentic_guard.filtering")

    @staticmethod
    def ratelimit() -> structlog.stdlib.BoundLogger:
        """Logger for rate limiting."""
        return get_logger("agentic_guard.ratelimit")

    @staticmethod
    def audit() -> structlog.stdlib.BoundLogger:
        """Logger for audit logging internals (not the audit trail itself)."""
        return get_logger("agentic_guard.audit")

    @staticmethod
    def config() -> structlog.stdlib.BoundLogger:
        """Logger for configuration and policy loading."""
        return get_logger("agentic_guard.config")

    @staticmethod
    def service() -> structlog.stdlib.BoundLogger:
        """Logger for service lifecycle and background tasks."""
        return get_logger("agentic_guard.service")
