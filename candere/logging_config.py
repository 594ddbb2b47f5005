"""Application logging configuration helpers."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional


DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "text"


class ISO8601Formatter(logging.Formatter):
    """Formatter with ISO-8601 timestamps."""

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc).astimezone()
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="milliseconds")


class JSONFormatter(ISO8601Formatter):
    """Structured JSON formatter for log collectors."""

    def __init__(self, include_identifiers: bool = False) -> None:
        super().__init__()
        self.include_identifiers = include_identifiers

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_identifiers:
            payload["process"] = record.process
            payload["thread"] = record.thread

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


class TextFormatter(ISO8601Formatter):
    """Human-readable formatter for console output."""

    def __init__(self, include_identifiers: bool = False) -> None:
        template = "%(asctime)s %(levelname)s %(name)s: %(message)s"
        if include_identifiers:
            template = (
                "%(asctime)s %(levelname)s %(name)s [pid=%(process)d tid=%(thread)d]: %(message)s"
            )
        super().__init__(fmt=template)


def configure_logging(
    level_name: str = DEFAULT_LOG_LEVEL,
    log_format: str = DEFAULT_LOG_FORMAT,
    include_identifiers: bool = False,
) -> None:
    """Configure root logging.

    Values normally come from ``runtime_config.load_config``:
    - log_level: Python logging level (default: INFO)
    - log_format: text|json (default: text)
    - log_include_identifiers: process/thread ids in each line (default: false)
    """
    level = getattr(logging, (level_name or DEFAULT_LOG_LEVEL).strip().upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    if (log_format or DEFAULT_LOG_FORMAT).strip().lower() == "json":
        formatter: logging.Formatter = JSONFormatter(include_identifiers=include_identifiers)
    else:
        formatter = TextFormatter(include_identifiers=include_identifiers)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    werkzeug_logger = logging.getLogger("werkzeug")
    werkzeug_logger.handlers.clear()
    werkzeug_logger.propagate = True
    werkzeug_logger.setLevel(level)

    # zeep logs every WSDL fetch at DEBUG/INFO; keep it quiet unless debugging.
    if level > logging.DEBUG:
        logging.getLogger("zeep").setLevel(logging.WARNING)
