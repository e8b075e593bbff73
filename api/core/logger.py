"""Structured logging for the streak services and the CLI.

Events are dotted names with key/value context, e.g.
``logger.info("streak.updated", user_id="123", current_streak=4)``.

LOG_FORMAT=json renders one JSON object per line; anything else renders
for a terminal. LOG_LEVEL picks the root level (INFO by default). stdlib
loggers such as sqlalchemy go through the same renderer.
"""

import logging
import os
import sys
from typing import TextIO

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars
from structlog.types import Processor

__all__ = [
    "bind_contextvars",
    "clear_contextvars",
    "configure_logging",
    "get_logger",
]

_PRE_CHAIN: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
]

# Libraries whose INFO chatter drowns out streak events
_QUIET_LOGGERS = ("google_genai", "httpx", "sqlalchemy.engine")


def _renderer() -> Processor:
    if os.environ.get("LOG_FORMAT", "").lower() == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=False, exception_formatter=structlog.dev.plain_traceback
    )


def configure_logging(stream: TextIO | None = None) -> None:
    """Install one root handler rendering both structlog and stdlib records.

    Safe to call more than once; each call replaces the previous handler.

    Args:
        stream: Destination for log lines, stdout by default. The CLI
            passes stderr so its JSON output stays clean.
    """
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    structlog.configure(
        processors=[
            *_PRE_CHAIN,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_PRE_CHAIN,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                _renderer(),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Module logger; call as ``get_logger(__name__)``."""
    return structlog.stdlib.get_logger(name)
