"""Structured logging setup using structlog.

Everything goes to stderr through one stdlib handler. The two audit loggers,
``decision_log`` (one record per pipeline outcome) and ``delivery_log`` (one
record per notification flush), can additionally be written as JSON lines to
``logging.audit_file`` so they can be replayed or grepped separately.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

from vigil.core.config import LoggingConfig, get_settings

AUDIT_LOGGERS = ("decision_log", "delivery_log")

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("aiohttp", "asyncio")


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    config: LoggingConfig | None = None,
) -> None:
    """Configure structlog with a JSON or console renderer.

    Args:
        level: Log level override (e.g. "DEBUG"). Uses config if None.
        fmt: Renderer format override ("json" or "console"). Uses config if None.
        config: Logging section to use instead of the cached settings.
    """
    config = config or get_settings().logging
    log_level = getattr(logging, (level or config.level).upper(), logging.INFO)
    log_format = fmt or config.format

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(console_renderer))
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    _setup_audit_file(config.audit_file)


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def _setup_audit_file(path: Path | None) -> None:
    """Attach (or detach) the JSON-lines audit handler on the audit loggers."""
    for name in AUDIT_LOGGERS:
        audit_logger = logging.getLogger(name)
        for existing in list(audit_logger.handlers):
            audit_logger.removeHandler(existing)
            existing.close()
        # Audit records are always kept, whatever the console level.
        audit_logger.setLevel(logging.INFO)

    if path is None:
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    for name in AUDIT_LOGGERS:
        logging.getLogger(name).addHandler(file_handler)
