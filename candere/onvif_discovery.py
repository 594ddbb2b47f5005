"""ONVIF discovery of camera metadata.

Queries a camera for the three pieces of metadata the control plane stores
(manufacturer, snapshot URI and RTSP stream URI). The protocol itself is
handled by ``onvif-zeep``; this module sequences the calls, reports progress
to a notification sink and collapses every failure into an unsuccessful
:class:`DiscoveryResult`.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit

import requests
import sentry_sdk
import zeep.exceptions
from onvif import ONVIFCamera
from onvif.exceptions import ONVIFError
from zeep.transports import Transport

from .notifications import LoggingNotificationSink, NotificationSink


logger = logging.getLogger(__name__)

DEFAULT_ONVIF_PORT = 80
DEFAULT_ONVIF_TLS_PORT = 443
DEFAULT_TIMEOUT_SECONDS = 10.0

STREAM_SETUP = {"Stream": "RTP-Unicast", "Transport": {"Protocol": "RTSP"}}

CameraFactory = Callable[[str, int, str, str], Any]


class DiscoveryPhase(Enum):
    """Discovery steps, in the order they run."""

    SERVICES = 1
    DEVICE_INFORMATION = 2
    PROFILES = 3
    SNAPSHOT_URI = 4
    STREAM_URI = 5


class DiscoveryPhaseError(ValueError):
    """Raised when a camera answers but the answer is unusable."""


DISCOVERY_ERRORS: Tuple[type, ...] = (
    ONVIFError,
    zeep.exceptions.Error,
    requests.RequestException,
    OSError,
    DiscoveryPhaseError,
)


@dataclass
class DiscoveryResult:
    """Metadata accumulated while discovery runs.

    Fields are filled in phase by phase. A result only becomes device data
    through :meth:`as_wire_fields`, which refuses incomplete results.
    """

    manufacturer: Optional[str] = None
    snapshot_url: Optional[str] = None
    rtsp_url: Optional[str] = None
    profile_count: int = 0
    failed_phase: Optional[DiscoveryPhase] = None

    @property
    def succeeded(self) -> bool:
        return self.failed_phase is None and None not in (
            self.manufacturer,
            self.snapshot_url,
            self.rtsp_url,
        )

    def as_wire_fields(self) -> Dict[str, str]:
        """Return the discovered fields under their wire keys.

        Raises:
            ValueError: If discovery did not complete.
        """
        if not self.succeeded:
            message = f"discovery incomplete (failed phase: {self.failed_phase})"
            raise ValueError(message)
        return {
            "manufacturer": str(self.manufacturer),
            "snapshotUrl": str(self.snapshot_url),
            "rtspUrl": str(self.rtsp_url),
        }


def parse_camera_address(address: str) -> Tuple[str, int]:
    """Split a camera address into host and ONVIF port.

    Accepts ``host``, ``host:port``, ``[v6]:port`` and full URLs such as
    ``http://host:8080/onvif/device_service``.

    Raises:
        DiscoveryPhaseError: If no host can be extracted or the port is invalid.
    """
    candidate = address.strip()
    if "://" not in candidate:
        candidate = f"//{candidate}"
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as exc:
        message = f"invalid camera address: {address!r}"
        raise DiscoveryPhaseError(message) from exc
    host = parts.hostname
    if not host:
        message = f"invalid camera address: {address!r}"
        raise DiscoveryPhaseError(message)
    if port is None:
        port = DEFAULT_ONVIF_TLS_PORT if parts.scheme == "https" else DEFAULT_ONVIF_PORT
    return host, port


def default_camera_factory(
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS, wsdl_dir: Optional[str] = None
) -> CameraFactory:
    """Build a factory creating ``ONVIFCamera`` clients with bounded timeouts.

    Args:
        timeout_seconds: Connect and per-operation timeout for SOAP calls.
        wsdl_dir: Directory holding the ONVIF WSDL files, or None for the
            library default.
    """

    def _create(host: str, port: int, username: str, password: str) -> Any:
        transport = Transport(timeout=timeout_seconds, operation_timeout=timeout_seconds)
        kwargs: Dict[str, Any] = {"transport": transport}
        if wsdl_dir:
            kwargs["wsdl_dir"] = wsdl_dir
        return ONVIFCamera(host, port, username, password, **kwargs)

    return _create


def _require(value: Any, what: str) -> Any:
    if value is None or value == "" or value == []:
        message = f"camera returned no {what}"
        raise DiscoveryPhaseError(message)
    return value


class OnvifDiscoveryClient:
    """Runs the five-phase ONVIF metadata discovery against one camera.

    No phase is retried; the first failure ends discovery. Each successful
    phase sends one progress message to the notification sink.
    """

    def __init__(
        self,
        *,
        camera_factory: Optional[CameraFactory] = None,
        notifier: Optional[NotificationSink] = None,
    ):
        self.camera_factory = camera_factory or default_camera_factory()
        self.notifier = notifier or LoggingNotificationSink()

    def _notify(self, message: str) -> None:
        try:
            self.notifier.notify(message)
        except Exception:
            logger.exception("discovery_notification_failed: message=%s", message)

    def discover(self, address: str, username: str, password: str) -> DiscoveryResult:
        """Collect manufacturer, snapshot URI and stream URI from a camera.

        Args:
            address: Camera host, ``host:port`` or device-service URL.
            username: ONVIF username.
            password: ONVIF password.

        Returns:
            DiscoveryResult; ``succeeded`` is False if any phase failed.
        """
        result = DiscoveryResult()
        phase = DiscoveryPhase.SERVICES
        try:
            host, port = parse_camera_address(address)
            camera = self.camera_factory(host, port, username, password)
            camera.devicemgmt.GetServices({"IncludeCapability": False})
            self._notify("Device services negotiated")

            phase = DiscoveryPhase.DEVICE_INFORMATION
            information = camera.devicemgmt.GetDeviceInformation()
            result.manufacturer = str(
                _require(getattr(information, "Manufacturer", None), "manufacturer")
            )
            self._notify("Device information retrieved")

            phase = DiscoveryPhase.PROFILES
            media = camera.create_media_service()
            profiles = list(_require(media.GetProfiles(), "media profiles"))
            result.profile_count = len(profiles)
            token = _require(getattr(profiles[0], "token", None), "profile token")
            self._notify(f"{result.profile_count} profiles retrieved")

            phase = DiscoveryPhase.SNAPSHOT_URI
            snapshot = media.GetSnapshotUri({"ProfileToken": token})
            result.snapshot_url = str(_require(getattr(snapshot, "Uri", None), "snapshot URI"))
            self._notify("Snapshot URI retrieved")

            phase = DiscoveryPhase.STREAM_URI
            stream = media.GetStreamUri({"StreamSetup": STREAM_SETUP, "ProfileToken": token})
            result.rtsp_url = str(_require(getattr(stream, "Uri", None), "stream URI"))
            self._notify("Stream URI retrieved")
        except DISCOVERY_ERRORS as exc:
            result.failed_phase = phase
            logger.warning(
                "onvif_discovery_failed: address=%s phase=%s reason=%s",
                address,
                phase.name.lower(),
                str(exc),
            )
            with sentry_sdk.new_scope() as scope:
                scope.set_tag("component", "discovery")
                scope.set_tag("discovery_phase", phase.name.lower())
                scope.capture_exception(exc)
            return result

        logger.info(
            "onvif_discovery_ok: address=%s manufacturer=%s profiles=%s",
            address,
            result.manufacturer,
            result.profile_count,
        )
        return result
