"""Sentry error tracking initialization and configuration.

Provides optional error tracking when CANDERE_SENTRY_DSN is set. Camera
credentials travel in request bodies, so events are scrubbed of password
fields and Authorization headers before they leave the device.
"""

import json
import logging
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration
from sentry_sdk.integrations.logging import LoggingIntegration


REDACTED = "[REDACTED]"
_SENSITIVE_KEYS = {"password", "authorization"}


def _redact_mapping(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).lower() in _SENSITIVE_KEYS else _redact_mapping(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact_mapping(item) for item in value]
    return value


def _redact_request_data(data: Any) -> Any:
    # Bodies arrive either parsed (dict) or as raw JSON text in a form field.
    if isinstance(data, str):
        try:
            parsed = json.loads(data)
        except ValueError:
            return data
        return json.dumps(_redact_mapping(parsed))
    if isinstance(data, dict):
        return {key: _redact_request_data(item) for key, item in _redact_mapping(data).items()}
    return data


def _redact_sensitive_data(event: Dict[str, Any], _hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Redact camera credentials and auth headers from Sentry events.

    Redacts:
    - Authorization header values
    - ``password`` keys anywhere in request data (JSON bodies and form fields)
    - CANDERE_SENTRY_DSN in the environment context

    Args:
        event: Sentry event dictionary to filter
        _hint: Additional context - unused but required by API

    Returns:
        Modified event
    """
    request_data = event.get("request")
    if isinstance(request_data, dict):
        headers = request_data.get("headers")
        if isinstance(headers, dict) and "Authorization" in headers:
            headers["Authorization"] = REDACTED
        if "data" in request_data:
            request_data["data"] = _redact_request_data(request_data["data"])

    env = event.get("contexts", {}).get("env")
    if isinstance(env, dict) and "CANDERE_SENTRY_DSN" in env:
        env["CANDERE_SENTRY_DSN"] = REDACTED

    return event


def _traces_sampler(sampling_context: Dict[str, Any]) -> float:
    """Determine traces sample rate per transaction.

    Sample rates:
    - POST (add, refresh, remove) → 1.0 (low volume, high diagnostic value)
    - Everything else             → 0.1 (list polling)

    Args:
        sampling_context: Sentry-provided context dict; may include
            ``wsgi_environ`` with PATH_INFO and REQUEST_METHOD.

    Returns:
        Float between 0.0 (never) and 1.0 (always).
    """
    wsgi_environ = sampling_context.get("wsgi_environ", {})
    method = wsgi_environ.get("REQUEST_METHOD", "GET")
    path = wsgi_environ.get("PATH_INFO", "")

    if method == "POST" and path != "/devices/fetch":
        return 1.0
    return 0.1


def init_sentry(sentry_dsn: Optional[str], release: str = "unknown") -> None:
    """Initialize Sentry SDK for error tracking.

    Only initializes if a DSN is provided. Configures the Flask and logging
    integrations, per-route trace sampling and the redaction hook.

    Args:
        sentry_dsn: Sentry DSN URL. If None or empty, Sentry is disabled.
        release: Release tag attached to events.
    """
    if not sentry_dsn:
        return

    sentry_sdk.init(  # type: ignore[call-arg]
        dsn=sentry_dsn,
        integrations=[
            FlaskIntegration(transaction_style="url"),
            # WARNING+ lines become breadcrumbs and ERROR+ lines become events.
            LoggingIntegration(
                level=logging.WARNING,
                event_level=logging.ERROR,
            ),
        ],
        traces_sampler=_traces_sampler,
        release=release,
        before_send=_redact_sensitive_data,  # type: ignore[arg-type]
        send_default_pii=False,
        environment="device",
    )

    sentry_sdk.set_tag("component_group", "control_plane")
