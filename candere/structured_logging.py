"""Structured logging utilities for correlation tracking and event logging."""

import json
import logging
import uuid
from typing import Any, Optional

from flask import g, request


logger = logging.getLogger(__name__)


def get_correlation_id() -> str:
    """Get or create correlation ID for current request."""
    if not hasattr(g, "correlation_id"):
        g.correlation_id = request.headers.get("X-Correlation-ID", uuid.uuid4().hex)
    return g.correlation_id


def _current_correlation_id() -> str:
    try:
        return get_correlation_id()
    except RuntimeError:
        # Outside request context
        return "none"


def log_event(
    event_type: str,
    severity: str = "INFO",
    **context: Any,
) -> None:
    """Log a structured event with correlation ID and context.

    Args:
        event_type: Name of the event (e.g., "device_added", "device_removed")
        severity: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **context: Additional context fields to include in the event
    """
    event_payload = {
        "event_type": event_type,
        "correlation_id": _current_correlation_id(),
        **context,
    }

    level = getattr(logging, severity.upper(), logging.INFO)
    logger.log(level, "event=%s %s", event_type, json.dumps(event_payload, default=str))


def log_error(
    operation: str,
    error_type: str,
    message: str,
    resource_id: Optional[Any] = None,
    severity: str = "ERROR",
    **context: Any,
) -> None:
    """Log a structured error with full context.

    Args:
        operation: The operation being performed (e.g., "devices_add")
        error_type: Category of error (e.g., "database_error", "bad_request")
        message: Human-readable error message
        resource_id: Optional device ID affected by this error
        severity: Log level
        **context: Additional context fields
    """
    error_payload = {
        "operation": operation,
        "error_type": error_type,
        "correlation_id": _current_correlation_id(),
        "message": message,
    }

    if resource_id is not None:
        error_payload["resource_id"] = resource_id

    error_payload.update(context)

    level = getattr(logging, severity.upper(), logging.ERROR)
    logger.log(
        level,
        "error operation=%s type=%s %s",
        operation,
        error_type,
        json.dumps(error_payload, default=str),
    )
