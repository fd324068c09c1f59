"""Structured logging configuration with redaction support."""

import logging
import sys
from typing import Any, Dict

import structlog

# Keys whose values must never reach a log sink, matched case-insensitively
# against the whole key.
SENSITIVE_KEYS = {
    "authorization",
    "password",
    "new_password",
    "password_hash",
    "token",
    "access_token",
    "refresh_token",
    "mfa_token",
    "code",
}


def redact_sensitive(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Redact sensitive information from log entries.

    Redacts:
    - Authorization headers
    - Passwords, password hashes and raw tokens
    - Any field containing 'secret'
    """
    for key in list(event_dict.keys()):
        key_lower = key.lower()
        if key_lower in SENSITIVE_KEYS or "secret" in key_lower:
            event_dict[key] = "REDACTED"

    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog for JSON output with correlation ID support.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_sensitive,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Optional logger name for context

    Returns:
        Configured structlog logger
    """
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger
