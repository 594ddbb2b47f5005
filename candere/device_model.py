"""Camera device record persisted by the control plane."""

from dataclasses import dataclass


# Identifiers are stored as signed 32-bit integers.
DEVICE_ID_MIN = -(2**31)
DEVICE_ID_MAX = 2**31 - 1


@dataclass(frozen=True)
class Device:
    """A network camera known to the control plane.

    ``manufacturer``, ``snapshot_url`` and ``rtsp_url`` are filled in from ONVIF
    discovery; the remaining fields come from the UI. Credentials are kept in
    plaintext because the UI needs them to open the snapshot and RTSP streams.
    """

    id: int
    nickname: str
    address: str
    username: str
    password: str
    manufacturer: str
    snapshot_url: str
    rtsp_url: str
