"""
Structured logging configuration.

Provider adapters log through stdlib ``logging``; retry, credential and
reconciliation events are emitted through structlog so they can be parsed by
log aggregation tools.

Usage:
    from bankbridge.core.logging_config import setup_logging, get_logger

    setup_logging()

    logger = get_logger(__name__)
    logger.info("credential_refreshed", provider="gocardless")
"""

import logging
import sys
from typing import Optional

import structlog
from pythonjsonlogger import jsonlogger

from bankbridge.config import Settings, get_settings

# Third-party loggers that are chatty at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "plaid")


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure stdlib logging and structlog.

    JSON output when LOG_FORMAT is "json" or ENVIRONMENT is "production",
    human-readable console output otherwise.
    """
    settings = settings or get_settings()
    use_json = settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production"

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if use_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configure_library_logging(use_json, quiet=settings.ENVIRONMENT == "production")


def _configure_library_logging(use_json: bool = False, quiet: bool = False) -> None:
    """Route third-party stdlib loggers through a JSON formatter."""
    if use_json:
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)

        for logger_name in _NOISY_LOGGERS:
            library_logger = logging.getLogger(logger_name)
            library_logger.handlers.clear()
            library_logger.addHandler(handler)
            library_logger.propagate = False

    if quiet:
        for logger_name in _NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Structured logger with context support
    """
    return structlog.get_logger(name)
