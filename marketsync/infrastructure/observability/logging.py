"""
Structured logging setup for the reconciliation core.
Provides JSON-formatted logs with consistent fields for session diagnostics.
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
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_session_context,
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
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _add_session_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Merge values bound with structlog.contextvars (e.g. session_id)."""
    return structlog.contextvars.merge_contextvars(logger, method_name, event_dict)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_store_failure(operation: str, key: str, error: Exception) -> None:
    """Log a swallowed persistent-store failure with consistent fields."""
    logger = get_logger("store")
    logger.warning(
        "Persistent store operation failed",
        operation=operation,
        key=key[:40],
        error=str(error),
        error_type=type(error).__name__,
        event_type="store_failure",
    )


def log_job_run(job: str, removed: int, duration_ms: float) -> None:
    """Log periodic sweep results with consistent fields."""
    logger = get_logger("jobs")
    logger.info(
        "Periodic job completed",
        job=job,
        removed=removed,
        duration_ms=duration_ms,
        event_type="job_run",
    )
