"""
Pytest configuration and shared fixtures.
"""

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional

import pytest


# Add the workspace root to path
WORKSPACE_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(WORKSPACE_ROOT))

from candere.device_store import DeviceStore, DeviceStoreError  # noqa: E402
from candere.onvif_discovery import DiscoveryPhase, DiscoveryResult  # noqa: E402


class FakeDeviceStore(DeviceStore):
    """In-memory store recording every call; ``fail`` makes each call raise."""

    def __init__(self, devices=None):
        self.devices = list(devices or [])
        self.calls: List[tuple] = []
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            message = "disk I/O error"
            raise DeviceStoreError(message)

    def fetch_all(self):
        self.calls.append(("fetch_all",))
        self._check()
        return list(self.devices)

    def insert(self, device):
        self.calls.append(("insert", device))
        self._check()
        self.devices.append(device)

    def update(self, device):
        self.calls.append(("update", device))
        self._check()
        for index, existing in enumerate(self.devices):
            if existing.id == device.id:
                self.devices[index] = device
                return True
        return False

    def delete(self, device):
        self.calls.append(("delete", device))
        self._check()
        before = len(self.devices)
        self.devices = [existing for existing in self.devices if existing.id != device.id]
        return len(self.devices) != before

    def calls_named(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]


class FakeDiscoveryClient:
    """Discovery stub that succeeds, or fails at ``fail_at``."""

    def __init__(self, fail_at: Optional[DiscoveryPhase] = None):
        self.fail_at = fail_at
        self.calls: List[tuple] = []

    def discover(self, address, username, password):
        self.calls.append((address, username, password))
        if self.fail_at is not None:
            return DiscoveryResult(failed_phase=self.fail_at)
        return DiscoveryResult(
            manufacturer="Acme",
            snapshot_url=f"http://{address}/snapshot.jpg",
            rtsp_url=f"rtsp://{address}:554/stream1",
            profile_count=2,
        )


class FakeMediaService:
    def __init__(self, camera):
        self.camera = camera

    def GetProfiles(self):
        self.camera.record("GetProfiles")
        return self.camera.profiles

    def GetSnapshotUri(self, params):
        self.camera.record("GetSnapshotUri", params)
        return SimpleNamespace(Uri=f"http://{self.camera.host}/onvif/snapshot")

    def GetStreamUri(self, params):
        self.camera.record("GetStreamUri", params)
        return SimpleNamespace(Uri=f"rtsp://{self.camera.host}:554/live")


class FakeDeviceManagement:
    def __init__(self, camera):
        self.camera = camera

    def GetServices(self, params):
        self.camera.record("GetServices", params)

    def GetDeviceInformation(self):
        self.camera.record("GetDeviceInformation")
        return SimpleNamespace(Manufacturer="Acme", Model="X100")


class FakeOnvifCamera:
    """Stands in for ``onvif.ONVIFCamera``; ``fail_on`` names the call that raises."""

    def __init__(self, host, port, username, password, fail_on=None, error=None, profiles=None):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.fail_on = fail_on
        self.error = error or OSError("connection refused")
        if profiles is None:
            profiles = [SimpleNamespace(token="profile_1"), SimpleNamespace(token="profile_2")]
        self.profiles = profiles
        self.calls: List[tuple] = []
        self.devicemgmt = FakeDeviceManagement(self)

    def record(self, name, *args):
        self.calls.append((name, *args))
        if name == self.fail_on:
            raise self.error

    def create_media_service(self):
        self.record("create_media_service")
        return FakeMediaService(self)


@pytest.fixture
def workspace_root():
    """Return the absolute path to the workspace root."""
    return WORKSPACE_ROOT


@pytest.fixture
def fake_store():
    return FakeDeviceStore()


@pytest.fixture
def fake_discovery():
    return FakeDiscoveryClient()


@pytest.fixture
def full_config(tmp_path):
    """Return complete config dict with all required runtime keys."""
    return {
        "bind_host": "127.0.0.1",
        "bind_port": 8080,
        "database_path": str(tmp_path / "devices.db"),
        "cors_origins": [],
        "onvif_timeout_seconds": 5.0,
        "onvif_wsdl_dir": None,
        "notify_url": "",
        "log_level": "INFO",
        "log_format": "text",
        "log_include_identifiers": False,
        "sentry_dsn": "",
    }


@pytest.fixture
def make_client(full_config, fake_store, fake_discovery):
    """Return a factory building a test client around the fake collaborators."""
    from candere.main import create_app

    def _make(store=None, discovery_client=None, config=None):
        app = create_app(
            config or full_config,
            store=store or fake_store,
            discovery_client=discovery_client or fake_discovery,
        )
        return app.test_client()

    return _make


@pytest.fixture
def client(make_client):
    return make_client()
