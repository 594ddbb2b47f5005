import json
import logging
import sys

import pytest

from candere.logging_config import JSONFormatter, TextFormatter, configure_logging

pytestmark = pytest.mark.unit


@pytest.fixture
def restore_logging():
    root_logger = logging.getLogger()
    werkzeug_logger = logging.getLogger("werkzeug")
    zeep_logger = logging.getLogger("zeep")
    saved = (
        list(root_logger.handlers),
        root_logger.level,
        list(werkzeug_logger.handlers),
        werkzeug_logger.level,
        zeep_logger.level,
    )
    yield
    root_logger.handlers[:] = saved[0]
    root_logger.setLevel(saved[1])
    werkzeug_logger.handlers[:] = saved[2]
    werkzeug_logger.setLevel(saved[3])
    zeep_logger.setLevel(saved[4])


def _record(message="device_added", exc_info=None):
    return logging.LogRecord(
        name="candere.device_api",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=exc_info,
    )


def test_json_formatter_emits_one_object_per_record():
    payload = json.loads(JSONFormatter().format(_record()))

    assert payload["severity"] == "INFO"
    assert payload["logger"] == "candere.device_api"
    assert payload["message"] == "device_added"
    assert "T" in payload["timestamp"]
    assert "process" not in payload


def test_json_formatter_includes_identifiers_and_exception():
    try:
        raise RuntimeError("disk full")
    except RuntimeError:
        record = _record(exc_info=sys.exc_info())

    payload = json.loads(JSONFormatter(include_identifiers=True).format(record))

    assert payload["process"] == record.process
    assert payload["thread"] == record.thread
    assert "RuntimeError: disk full" in payload["exception"]


def test_text_formatter_includes_identifiers_on_request():
    plain = TextFormatter().format(_record())
    detailed = TextFormatter(include_identifiers=True).format(_record())

    assert "INFO candere.device_api: device_added" in plain
    assert "pid=" not in plain
    assert "pid=" in detailed


def test_configure_logging_installs_single_root_handler(restore_logging):
    configure_logging("debug", "json")
    configure_logging("warning", "json")

    root_logger = logging.getLogger()
    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)
    assert root_logger.level == logging.WARNING
    assert logging.getLogger("werkzeug").propagate is True


def test_configure_logging_falls_back_on_unknown_values(restore_logging):
    configure_logging("chatty", "xml")

    root_logger = logging.getLogger()
    assert root_logger.level == logging.INFO
    assert isinstance(root_logger.handlers[0].formatter, TextFormatter)


def test_configure_logging_quiets_zeep_unless_debugging(restore_logging):
    configure_logging("INFO")
    assert logging.getLogger("zeep").level == logging.WARNING

    logging.getLogger("zeep").setLevel(logging.NOTSET)
    configure_logging("DEBUG")
    assert logging.getLogger("zeep").level == logging.NOTSET
