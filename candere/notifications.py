"""Progress notifications for the UI.

Discovery reports progress through a :class:`NotificationSink`. Sinks are
best-effort: the request path hands messages to a
:class:`NotificationDispatcher`, which delivers them on its own worker thread
so a slow or failing sink never delays or alters a response.
"""

import json
import logging
import queue
import urllib.error
import urllib.request
from threading import Lock, Thread
from typing import Optional, Protocol

import sentry_sdk


logger = logging.getLogger(__name__)

# Sentinel that tells the worker thread to exit.
_STOP = object()


class NotificationSink(Protocol):
    """Anything that can show a short human-readable message to the user."""

    def notify(self, message: str) -> None: ...


class LoggingNotificationSink:
    """Sink that writes notifications to the application log."""

    def notify(self, message: str) -> None:
        logger.info("notification: %s", message)


class WebhookNotificationSink:
    """Sink that POSTs notifications to a UI-owned callback URL.

    The body is ``{"message": <text>}``. Delivery failures are logged and
    otherwise ignored.
    """

    def __init__(self, url: str, timeout_seconds: float = 2.0):
        self.url = url
        self.timeout_seconds = timeout_seconds

    def notify(self, message: str) -> None:
        request = urllib.request.Request(
            url=self.url,
            data=json.dumps({"message": message}).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                status_code = getattr(response, "status", 0)
                if status_code >= 400:
                    logger.warning(
                        "notification_webhook_failed: status=%s url=%s", status_code, self.url
                    )
        except urllib.error.HTTPError as exc:
            logger.warning("notification_webhook_http_error: status=%s url=%s", exc.code, self.url)
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            logger.warning(
                "notification_webhook_network_error: reason=%s url=%s", str(exc), self.url
            )


class NotificationDispatcher:
    """Fire-and-forget delivery of notifications on a daemon thread.

    ``notify`` only enqueues, so callers never wait on the sink. Messages
    queued while the dispatcher is stopped are delivered once it starts.
    """

    def __init__(self, sink: NotificationSink, max_pending: int = 100):
        self.sink = sink
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=max_pending)
        self._thread: Optional[Thread] = None
        self._thread_lock = Lock()

    def start(self) -> None:
        """Start the delivery thread. Safe to call more than once."""
        with self._thread_lock:
            if self._thread and self._thread.is_alive():
                return
            self._thread = Thread(target=self._run_loop, name="notification-dispatcher", daemon=True)
            self._thread.start()

    def stop(self, timeout_seconds: float = 3.0) -> None:
        """Deliver what is already queued, then stop the delivery thread.

        Args:
            timeout_seconds: Maximum time to wait for thread termination.
        """
        with self._thread_lock:
            if not (self._thread and self._thread.is_alive()):
                return
            try:
                self._queue.put(_STOP, timeout=timeout_seconds)
            except queue.Full:
                logger.warning("notification_dispatcher_stop: queue full, abandoning pending")
            self._thread.join(timeout=timeout_seconds)
            if not self._thread.is_alive():
                self._thread = None

    def notify(self, message: str) -> None:
        """Queue ``message`` for delivery; drops it if the queue is full."""
        try:
            self._queue.put_nowait(message)
        except queue.Full:
            logger.warning("notification_dropped: queue full message=%s", message)

    def _run_loop(self) -> None:
        while True:
            message = self._queue.get()
            if message is _STOP:
                return
            try:
                self.sink.notify(str(message))
            except Exception as exc:
                logger.exception("notification_sink_failed: message=%s", message)
                with sentry_sdk.new_scope() as scope:
                    scope.set_tag("component", "notifications")
                    scope.capture_exception(exc)


def build_notification_sink(notify_url: str) -> NotificationSink:
    """Return the webhook sink when a callback URL is configured, else the log sink."""
    if notify_url:
        return WebhookNotificationSink(notify_url)
    return LoggingNotificationSink()
