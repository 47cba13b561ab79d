"""
Logging configuration.

All modules log through structlog with event-style keys
(``chat.authenticated``, ``access.auto_joined``...) and structured fields.
Every line carries ``service="runbook-chat"``.
"""

from __future__ import annotations

import logging

import structlog

SERVICE_NAME = "runbook-chat"


def _level_number(level: str) -> int:
    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog for the server process (``fmt`` is "json" or "text")."""
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if fmt == "json":
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=shared + renderers,
        wrapper_class=structlog.make_filtering_bound_logger(_level_number(level)),
        cache_logger_on_first_use=False,
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=SERVICE_NAME)
