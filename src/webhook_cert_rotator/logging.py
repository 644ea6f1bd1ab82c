"""Structured logging configuration for the Webhook Certificate Rotator."""

import json
import logging
import sys
from typing import Any

from .constants import CONTROLLER_NAME
from .utils.errors import SENSITIVE_FIELDS


def setup_structured_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def log_rotation_event(
    logger: logging.Logger,
    component: str,
    event: str,
    reason: str,
    message: str,
    level: int = logging.INFO,
    **kwargs: Any,
) -> None:
    """Log a structured rotation or injection event."""
    log_data = {
        "controller": CONTROLLER_NAME,
        "component": component,
        "event": event,
        "reason": reason,
        "message": message,
    }
    log_data.update(sanitize_secrets(kwargs))
    logger.log(level, json.dumps(log_data, default=str))


def sanitize_secrets(log_data: dict[str, Any]) -> dict[str, Any]:
    """Remove private key fields from log data."""
    sanitized = log_data.copy()
    for field in SENSITIVE_FIELDS:
        if field in sanitized:
            sanitized[field] = "***REDACTED***"
    return sanitized
