"""
Structured logging setup for the listening-history reconstruction engine.
Provides JSON-formatted logs with consistent fields for background runs.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _drop_empty_fields,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)


def _drop_empty_fields(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Remove None-valued fields so optional context does not clutter entries."""
    return {key: value for key, value in event_dict.items() if value is not None}


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_phase(logger, phase: str, completed: bool, duration_ms: float, **fields) -> None:
    """Log a reconstruction phase boundary with consistent fields."""
    log_data = {"phase": phase, "duration_ms": round(duration_ms, 2), **fields}

    if completed:
        logger.info("Reconstruction phase completed", **log_data)
    else:
        logger.error("Reconstruction phase failed", **log_data)
