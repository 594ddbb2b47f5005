import logging
import os
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)

# The control plane only ever listens on loopback.
LOOPBACK_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_DATABASE_PATH = "./data/devices.db"
DEFAULT_ONVIF_TIMEOUT_SECONDS = 10.0


def _parse_bool(raw_value: Optional[str]) -> bool:
    if raw_value is None:
        return False
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _load_server_config() -> Dict[str, Any]:
    """Load network binding and persistence configuration from environment variables.

    Env vars:
    - CANDERE_PORT (1-65535, default: 8080)
    - CANDERE_DATABASE_PATH (default: ./data/devices.db)
    - CANDERE_CORS_ORIGINS (comma-separated; empty disables CORS)

    Returns:
        Dict with keys: bind_host, bind_port, database_path, cors_origins.
    """
    port_raw = os.environ.get("CANDERE_PORT", str(DEFAULT_PORT))
    try:
        bind_port = int(port_raw)
    except ValueError:
        logger.warning("Invalid CANDERE_PORT value '%s', using default %s", port_raw, DEFAULT_PORT)
        bind_port = DEFAULT_PORT
    if not 1 <= bind_port <= 65535:
        logger.warning("Invalid CANDERE_PORT range '%s', using default %s", port_raw, DEFAULT_PORT)
        bind_port = DEFAULT_PORT

    database_path = os.environ.get("CANDERE_DATABASE_PATH", "").strip() or DEFAULT_DATABASE_PATH

    cors_origins_raw = os.environ.get("CANDERE_CORS_ORIGINS", "")
    cors_origins = [origin.strip() for origin in cors_origins_raw.split(",") if origin.strip()]

    return {
        "bind_host": LOOPBACK_HOST,
        "bind_port": bind_port,
        "database_path": database_path,
        "cors_origins": cors_origins,
    }


def _load_discovery_config() -> Dict[str, Any]:
    """Load ONVIF discovery and notification configuration from environment variables.

    Env vars:
    - CANDERE_ONVIF_TIMEOUT_SECONDS (default: 10, must be > 0)
    - CANDERE_ONVIF_WSDL_DIR (optional override of the onvif-zeep WSDL directory)
    - CANDERE_NOTIFY_URL (optional UI callback for progress notifications)

    Returns:
        Dict with keys: onvif_timeout_seconds, onvif_wsdl_dir, notify_url.
    """
    timeout_raw = os.environ.get(
        "CANDERE_ONVIF_TIMEOUT_SECONDS", str(DEFAULT_ONVIF_TIMEOUT_SECONDS)
    )
    try:
        onvif_timeout_seconds = float(timeout_raw)
    except ValueError:
        logger.warning(
            "Invalid CANDERE_ONVIF_TIMEOUT_SECONDS value '%s', using default %s",
            timeout_raw,
            DEFAULT_ONVIF_TIMEOUT_SECONDS,
        )
        onvif_timeout_seconds = DEFAULT_ONVIF_TIMEOUT_SECONDS
    if onvif_timeout_seconds <= 0:
        onvif_timeout_seconds = DEFAULT_ONVIF_TIMEOUT_SECONDS

    return {
        "onvif_timeout_seconds": onvif_timeout_seconds,
        "onvif_wsdl_dir": os.environ.get("CANDERE_ONVIF_WSDL_DIR", "").strip() or None,
        "notify_url": os.environ.get("CANDERE_NOTIFY_URL", "").strip(),
    }


def _load_logging_config() -> Dict[str, Any]:
    """Load logging and error-tracking configuration from environment variables.

    Env vars:
    - CANDERE_LOG_LEVEL: Python logging level (default: INFO)
    - CANDERE_LOG_FORMAT: text|json (default: text)
    - CANDERE_LOG_INCLUDE_IDENTIFIERS: true/false for process/thread IDs (default: false)
    - CANDERE_SENTRY_DSN: Sentry DSN; empty disables error tracking

    Returns:
        Dict with keys: log_level, log_format, log_include_identifiers, sentry_dsn.
    """
    return {
        "log_level": os.environ.get("CANDERE_LOG_LEVEL", "INFO"),
        "log_format": os.environ.get("CANDERE_LOG_FORMAT", "text"),
        "log_include_identifiers": _parse_bool(
            os.environ.get("CANDERE_LOG_INCLUDE_IDENTIFIERS", "false")
        ),
        "sentry_dsn": os.environ.get("CANDERE_SENTRY_DSN", "").strip(),
    }


def load_config() -> Dict[str, Any]:
    """Load the full runtime configuration from the environment.

    Invalid values fall back to documented defaults without raising.
    """
    config: Dict[str, Any] = {}
    config.update(_load_server_config())
    config.update(_load_discovery_config())
    config.update(_load_logging_config())
    return config
