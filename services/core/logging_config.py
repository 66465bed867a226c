"""
Centralized Logging Configuration for the Decision Engine

Structured logging through structlog, bridged onto the stdlib root logger.
Context bound with ``bind_request_context`` (request id, method, path) is
merged into every event logged while that request is handled.

Usage:
    from logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("decision_evaluated", decision_id=str(decision.id), new_health=72)
"""

import logging
import sys
from typing import Any
from pathlib import Path

import structlog

from config import LOG_FILE, LOG_JSON, LOG_LEVEL

SERVICE_NAME = "decision-engine"


def _add_service_name(logger, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_logs: bool = False
) -> None:
    """
    Configure centralized logging for the entire application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for logs
        json_logs: JSON lines instead of the console renderer
    """
    level_no = getattr(logging, level.upper(), logging.INFO)
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    processors.append(
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(format="%(message)s", level=level_no, handlers=handlers, force=True)


def get_logger(name: str | None = None) -> Any:
    """Get a structlog logger bound to the given name."""
    return structlog.get_logger(name)


def bind_request_context(**values) -> None:
    """Replace the per-request logging context (called once per HTTP request)"""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def log_lifecycle_transition(
    decision_id: str,
    from_state: str,
    to_state: str,
    actor: str,
    reason: str
) -> None:
    """Log a stored-lifecycle change with structured data"""
    logger = get_logger("lifecycle_transition")
    logger.info(
        "lifecycle_transition",
        decision_id=decision_id,
        from_state=from_state,
        to_state=to_state,
        actor=actor,
        reason=reason
    )


def log_error(
    error: Exception,
    context: dict | None = None,
    level: str = "ERROR"
) -> None:
    """Log error with full context and stack trace"""
    logger = get_logger("error_handler")
    log_func = getattr(logger, level.lower(), logger.error)

    log_data = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }

    if context:
        log_data.update(context)

    log_func("error_occurred", **log_data, exc_info=error)


def http_request_summary(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float
) -> None:
    """Log HTTP request summary"""
    logger = get_logger("http")
    logger.info(
        "http_request",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms
    )


# Auto-setup on import
setup_logging(
    level=LOG_LEVEL,
    log_file=LOG_FILE,
    json_logs=LOG_JSON
)
