"""
Structured logging for the alumni portal.

Call ``setup_logging`` once at startup; modules obtain loggers with
``get_logger(__name__)`` and log events with keyword fields.
"""

import logging
import sys

import structlog
from structlog.stdlib import LoggerFactory

_configured = False


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        json_output: Render JSON lines (production) instead of console output
    """
    global _configured

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if not _configured:
        logging.basicConfig(
            format="%(message)s",
            stream=sys.stdout,
            level=getattr(logging, log_level.upper(), logging.INFO),
        )
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
