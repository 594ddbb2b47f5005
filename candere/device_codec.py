"""JSON wire codec for device records and response envelopes.

Every endpoint answers with the same envelope shape::

    {"response": <ack>, "devices": {"operation": "+" | "-" | "=", ...}}

The ``operation`` tag lets the UI run one reducer over its in-memory device
list: ``+`` inserts ``item``, ``-`` removes ``item`` and ``=`` replaces the
list with ``items``.
"""

import hashlib
import json
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .device_model import DEVICE_ID_MAX, DEVICE_ID_MIN, Device


OPERATION_INSERT = "+"
OPERATION_DELETE = "-"
OPERATION_REPLACE = "="

# Wire key -> Device attribute for every required string field.
STRING_FIELDS = {
    "nickname": "nickname",
    "address": "address",
    "username": "username",
    "password": "password",
    "manufacturer": "manufacturer",
    "snapshotUrl": "snapshot_url",
    "rtspUrl": "rtsp_url",
}

# Fields a UI supplies before discovery has filled in the rest.
REQUEST_FIELDS = ("nickname", "address", "username", "password")


class DeviceDecodeError(ValueError):
    """Raised when a wire payload cannot be turned into a device record."""


def serialize_device(device: Device) -> Dict[str, Any]:
    """Map every device field onto its wire key."""
    payload: Dict[str, Any] = {"id": device.id}
    for wire_key, attribute in STRING_FIELDS.items():
        payload[wire_key] = getattr(device, attribute)
    return payload


def derive_device_id(payload: Dict[str, Any], salt: Optional[int] = None) -> int:
    """Derive an identifier for a payload submitted without one.

    The payload is hashed together with a ``timestamp`` salt, so the same
    content submitted at two different times yields two identifiers. The salt
    is added to a copy and never written back into ``payload``.

    Args:
        payload: Decoded request object.
        salt: Timestamp salt in nanoseconds (default: ``time.time_ns()``).

    Returns:
        Non-zero signed 32-bit identifier.
    """
    salted = dict(payload)
    salted["timestamp"] = time.time_ns() if salt is None else salt
    canonical = json.dumps(salted, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).digest()
    derived = int.from_bytes(digest[:4], "big", signed=True)
    # Zero means "unassigned" on the wire.
    return derived or 1


def _validate_id(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        message = "id must be an integer"
        raise DeviceDecodeError(message)
    if not DEVICE_ID_MIN <= value <= DEVICE_ID_MAX:
        message = "id must fit in a signed 32-bit integer"
        raise DeviceDecodeError(message)
    return value


def validate_string_fields(obj: Dict[str, Any], fields: Iterable[str]) -> None:
    """Ensure each named wire field is present and a string.

    Raises:
        DeviceDecodeError: Naming the first offending field.
    """
    for field in fields:
        if field not in obj:
            message = f"missing required field: {field}"
            raise DeviceDecodeError(message)
        if not isinstance(obj[field], str):
            message = f"{field} must be a string"
            raise DeviceDecodeError(message)


def read_device_id(obj: Dict[str, Any]) -> int:
    """Return the payload's identifier, or 0 when it is absent."""
    if obj.get("id") is None:
        return 0
    return _validate_id(obj["id"])


def deserialize_device(obj: Any) -> Device:
    """Build a device from its wire representation.

    A missing or zero ``id`` is replaced by :func:`derive_device_id`.

    Args:
        obj: Decoded JSON object.

    Returns:
        Device record.

    Raises:
        DeviceDecodeError: If ``obj`` is not an object, a required string field
            is absent or not a string, or ``id`` is not a 32-bit integer.
    """
    if not isinstance(obj, dict):
        message = "device payload must be an object"
        raise DeviceDecodeError(message)

    device_id = read_device_id(obj)
    if device_id == 0:
        device_id = derive_device_id(obj)

    validate_string_fields(obj, STRING_FIELDS)
    values = {attribute: obj[wire_key] for wire_key, attribute in STRING_FIELDS.items()}
    return Device(id=device_id, **values)


def decode_request_payload(raw: Optional[str]) -> Dict[str, Any]:
    """Parse a request body into a JSON object.

    Raises:
        DeviceDecodeError: If the text is empty, not JSON, or not an object.
    """
    if raw is None or not raw.strip():
        message = "request body is empty"
        raise DeviceDecodeError(message)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        message = f"request body is not valid JSON: {exc.msg}"
        raise DeviceDecodeError(message) from exc
    if not isinstance(payload, dict):
        message = "request body must be a JSON object"
        raise DeviceDecodeError(message)
    return payload


def device_list_payload(devices: Iterable[Device]) -> Dict[str, Any]:
    """Build a ``=`` payload carrying the full device list."""
    items: List[Dict[str, Any]] = [serialize_device(device) for device in devices]
    return {"operation": OPERATION_REPLACE, "items": items}


def device_item_payload(operation: str, item: Dict[str, Any]) -> Dict[str, Any]:
    """Build a ``+`` or ``-`` payload carrying a single device."""
    return {"operation": operation, "item": item}


def wrap_envelope(
    ack: Optional[Dict[str, Any]], entries: Iterable[Tuple[str, Any]] = ()
) -> Dict[str, Any]:
    """Wrap an acknowledgement and domain payloads in the response envelope.

    Args:
        ack: Acknowledgement object, omitted from the envelope when ``None``.
        entries: ``(key, payload)`` pairs added beside ``response``.

    Returns:
        Envelope dict ready for JSON encoding.
    """
    envelope: Dict[str, Any] = {}
    if ack is not None:
        envelope["response"] = ack
    for key, payload in entries:
        envelope[key] = payload
    return envelope
