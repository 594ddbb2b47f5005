import json
import logging
import threading
import time
from unittest import mock

import pytest
from conftest import FakeOnvifCamera

from candere import main
from candere.device_store import SQLiteDeviceStore
from candere.onvif_discovery import OnvifDiscoveryClient

pytestmark = pytest.mark.integration


def test_create_app_builds_default_collaborators(full_config, tmp_path):
    app = main.create_app(full_config)
    try:
        assert app.notification_dispatcher is not None
        assert app.candere_config["database_path"] == str(tmp_path / "devices.db")

        response = app.test_client().get("/devices/fetch")
        assert response.status_code == 200
        assert response.get_json() == {"devices": {"operation": "=", "items": []}}
        assert (tmp_path / "devices.db").exists()
    finally:
        app.notification_dispatcher.stop()


def test_slow_notifier_does_not_delay_add(monkeypatch, full_config, fake_store):
    class SlowSink:
        def __init__(self):
            self.messages = []
            self.threads = set()
            self.done = threading.Event()

        def notify(self, message):
            time.sleep(0.5)
            self.threads.add(threading.current_thread().name)
            self.messages.append(message)
            if len(self.messages) == 5:
                self.done.set()

    def fake_camera_factory(**_kwargs):
        return lambda host, port, username, password: FakeOnvifCamera(
            host, port, username, password
        )

    monkeypatch.setattr(main, "default_camera_factory", fake_camera_factory)
    sink = SlowSink()
    app = main.create_app(full_config, store=fake_store, notifier=sink)
    try:
        started = time.monotonic()
        response = app.test_client().post(
            "/devices/add",
            data=json.dumps({"address": "10.0.0.5", "username": "u", "password": "p", "nickname": "Cam1"}),
            content_type="application/json",
        )
        elapsed = time.monotonic() - started

        assert response.get_json()["response"] == {"success": True}
        assert elapsed < 0.5
        assert sink.done.wait(timeout=5.0)
    finally:
        app.notification_dispatcher.stop()

    assert sink.messages == [
        "Device services negotiated",
        "Device information retrieved",
        "2 profiles retrieved",
        "Snapshot URI retrieved",
        "Stream URI retrieved",
    ]
    assert sink.threads == {"notification-dispatcher"}


def test_create_app_wraps_notifier_in_started_dispatcher(full_config):
    class Sink:
        def notify(self, message):
            pass

    sink = Sink()
    with mock.patch.object(main, "OnvifDiscoveryClient", wraps=OnvifDiscoveryClient) as client_cls:
        app = main.create_app(full_config, notifier=sink)

    dispatcher = app.notification_dispatcher
    try:
        assert dispatcher is not None
        assert dispatcher.sink is sink
        assert client_cls.call_args[1]["notifier"] is dispatcher
    finally:
        dispatcher.stop()


def test_create_app_uses_database_path_from_config(full_config):
    with mock.patch.object(main, "SQLiteDeviceStore", wraps=SQLiteDeviceStore) as store_cls:
        app = main.create_app(full_config, discovery_client=mock.Mock())

    store_cls.assert_called_once_with(full_config["database_path"])
    assert app.notification_dispatcher is None


def test_handle_shutdown_stops_dispatcher_and_exits(full_config):
    app = main.create_app(full_config)
    dispatcher = app.notification_dispatcher

    with pytest.raises(SystemExit):
        main.handle_shutdown(app, 15, None)

    assert dispatcher._thread is None


def test_requests_are_logged_with_status(client, caplog):
    with caplog.at_level(logging.DEBUG, logger="candere.main"):
        client.get("/devices/fetch")
        client.get("/nope")

    messages = [record for record in caplog.records if record.name == "candere.main"]
    fetch_record = next(r for r in messages if "path=/devices/fetch" in r.getMessage())
    missing_record = next(r for r in messages if "path=/nope" in r.getMessage())
    assert fetch_record.levelno == logging.DEBUG
    assert "status=200" in fetch_record.getMessage()
    assert missing_record.levelno == logging.INFO
    assert "status=404" in missing_record.getMessage()


def test_main_serves_on_loopback(monkeypatch, full_config):
    monkeypatch.setattr(main, "load_config", lambda: full_config)
    monkeypatch.setattr(main, "configure_logging", lambda *args: None)
    monkeypatch.setattr(main, "init_sentry", lambda dsn: None)
    monkeypatch.setattr(main.signal, "signal", lambda *args: None)

    fake_server = mock.Mock()
    with mock.patch.object(main, "make_server", return_value=fake_server) as make_server:
        main.main()

    args, kwargs = make_server.call_args
    assert args[:2] == ("127.0.0.1", 8080)
    assert kwargs == {"threaded": True}
    fake_server.serve_forever.assert_called_once()
    fake_server.server_close.assert_called_once()
