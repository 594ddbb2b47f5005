#!/usr/bin/python3

import logging
import signal
import time
from typing import Any, Dict, Optional

from flask import Flask, g, request
from flask_cors import CORS
from werkzeug.serving import make_server

from .device_api import register_device_routes
from .device_store import DeviceStore, SQLiteDeviceStore
from .logging_config import configure_logging
from .notifications import NotificationDispatcher, NotificationSink, build_notification_sink
from .onvif_discovery import OnvifDiscoveryClient, default_camera_factory
from .runtime_config import load_config
from .sentry_config import init_sentry


logger = logging.getLogger(__name__)


def _register_request_logging(app: Flask) -> None:
    @app.before_request
    def _track_request_start() -> None:
        g.request_started_monotonic = time.monotonic()

    @app.after_request
    def _log_request(response):
        request_started = getattr(g, "request_started_monotonic", None)
        latency_ms = 0.0
        if request_started is not None:
            latency_ms = (time.monotonic() - request_started) * 1000

        level = logging.DEBUG if request.path == "/devices/fetch" else logging.INFO
        logger.log(
            level,
            "request method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.path,
            response.status_code,
            latency_ms,
        )
        return response


def create_app(
    config: Optional[Dict[str, Any]] = None,
    *,
    store: Optional[DeviceStore] = None,
    discovery_client: Optional[OnvifDiscoveryClient] = None,
    notifier: Optional[NotificationSink] = None,
) -> Flask:
    """Build the control-plane Flask application.

    Collaborators not passed in are built from ``config``: a SQLite store at
    ``database_path``, an ONVIF client bounded by ``onvif_timeout_seconds``, and
    a started notification dispatcher feeding the log or ``notify_url``.

    Args:
        config: Runtime configuration (default: ``load_config()``).
        store: Device store override.
        discovery_client: Discovery client override.
        notifier: Notification sink for the default discovery client. It is
            wrapped in a started dispatcher, so it never runs on a request
            thread.

    Returns:
        Configured Flask app. The dispatcher, when created here, is exposed as
        ``app.notification_dispatcher`` so the caller can stop it.
    """
    cfg = load_config() if config is None else config

    app = Flask(__name__)
    app.candere_config = dict(cfg)
    app.notification_dispatcher = None
    _register_request_logging(app)

    if cfg.get("cors_origins"):
        CORS(app, resources={r"/devices/*": {"origins": cfg["cors_origins"]}})

    if store is None:
        store = SQLiteDeviceStore(cfg["database_path"])

    if discovery_client is None:
        if notifier is None:
            notifier = build_notification_sink(cfg.get("notify_url", ""))
        # Sinks only ever run on the dispatcher thread, never on a request thread.
        dispatcher = NotificationDispatcher(notifier)
        dispatcher.start()
        app.notification_dispatcher = dispatcher
        discovery_client = OnvifDiscoveryClient(
            camera_factory=default_camera_factory(
                timeout_seconds=cfg["onvif_timeout_seconds"],
                wsdl_dir=cfg.get("onvif_wsdl_dir"),
            ),
            notifier=dispatcher,
        )

    register_device_routes(app, store, discovery_client)
    logger.info(
        "control_plane_initialized: database_path=%s cors_origins=%s notify_url_set=%s",
        cfg.get("database_path"),
        cfg.get("cors_origins") or "disabled",
        bool(cfg.get("notify_url")),
    )
    return app


def handle_shutdown(app: Flask, signum: int, _frame: Optional[object]) -> None:
    dispatcher = getattr(app, "notification_dispatcher", None)
    if dispatcher is not None:
        dispatcher.stop()
    raise SystemExit(signum)


def main() -> None:
    cfg = load_config()
    configure_logging(cfg["log_level"], cfg["log_format"], cfg["log_include_identifiers"])
    init_sentry(cfg["sentry_dsn"])

    app = create_app(cfg)
    server = make_server(cfg["bind_host"], cfg["bind_port"], app, threaded=True)
    signal.signal(signal.SIGTERM, lambda signum, frame: handle_shutdown(app, signum, frame))
    signal.signal(signal.SIGINT, lambda signum, frame: handle_shutdown(app, signum, frame))
    logger.info("Control plane listening on http://%s:%s", cfg["bind_host"], cfg["bind_port"])
    try:
        server.serve_forever()
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
