"""Structured logging setup via structlog."""

from __future__ import annotations

import logging

import structlog


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structlog for applications consuming event streams.

    The library logs through ``structlog.get_logger()`` and never configures
    structlog on import; call this once at startup to get level filtering,
    ISO timestamps and either console or JSON-lines rendering.

    Args:
        log_level: Minimum level name, e.g. "DEBUG" or "WARNING"
        json_output: Render JSON lines instead of the console format
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # ConsoleRenderer formats exceptions itself
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
