"""
Structured logging setup for the mail action gateway.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys

import structlog
from structlog.stdlib import LoggerFactory

# Ticket links are bearer credentials; only a prefix may reach the logs
TICKET_PATH_PREFIX = 12
TICKET_PATH_MIN_LENGTH = 40


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            # Request id and client ip bound by RequestContextMiddleware
            structlog.contextvars.merge_contextvars,
            _redact_ticket_path,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    # Configure stdlib logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _redact_ticket_path(logger, method_name: str, event_dict: dict) -> dict:
    path = event_dict.get("path")
    if isinstance(path, str) and len(path) >= TICKET_PATH_MIN_LENGTH and "." not in path:
        event_dict["path"] = path[:TICKET_PATH_PREFIX] + "..."
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


# Convenience functions for common log patterns
def log_request(method: str, path: str, status_code: int, duration_ms: float):
    """Log HTTP requests with consistent fields."""
    logger = get_logger("http")

    log_data = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
    }

    if status_code >= 500:
        logger.warning("HTTP request failed", **log_data)
    else:
        logger.info("HTTP request completed", **log_data)


def log_action_result(
    operator: str | None,
    category: str,
    status_code: int,
    message_key: str,
    client_ip: str | None = None,
    error: str | None = None,
):
    """Log the outcome of a ticket action with consistent fields."""
    logger = get_logger("actions")

    log_data = {
        "operator": operator,
        "category": category,
        "status_code": status_code,
        "message_key": message_key,
    }

    if client_ip:
        log_data["client_ip"] = client_ip

    if error:
        log_data["error"] = error

    if status_code >= 500:
        logger.error("Ticket action failed", **log_data)
    else:
        logger.info("Ticket action completed", **log_data)
